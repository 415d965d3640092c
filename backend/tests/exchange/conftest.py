"""Fixtures for exchange tests.

Raw records are built the way SLPDB returns them. The settlement address
deriver and the address encoder are deterministic fakes: the deriver hashes
the offer terms, so any change to a term yields a different address.
"""

import base64
import hashlib
from fractions import Fraction

import pytest

from app.exchange.codec import LOKAD_ID_BASE64, VERSION_OP
from app.exchange.network import DEFAULT_NETWORK_SETTINGS

TOKEN_ID = "a" * 64
OTHER_TOKEN_ID = "b" * 64
RECEIVER_HASH = bytes(range(20))


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def fake_encoder(address_type: str, hash160: bytes) -> str:
    return f"bitcoincash:{address_type.lower()}-{hash160.hex()}"


def fake_derive(asset_id, decimal_factor, sale_amount, price_per_unit, receiving_address, fee_address, fee_divisor):
    terms = "|".join(
        str(part)
        for part in (asset_id, decimal_factor, sale_amount, price_per_unit, receiving_address, fee_address, fee_divisor)
    )
    return "bitcoincash:p" + hashlib.sha256(terms.encode()).hexdigest()[:40]


def build_record(
    txid,
    raw_price,
    *,
    token_id=TOKEN_ID,
    decimals=0,
    amount="100",
    inverted=False,
    spends=(),
    block_time=None,
    receiver=RECEIVER_HASH,
    settlement_address=None,
    value=546,
):
    """An exchange transaction announcing an offer at raw_price."""
    network = DEFAULT_NETWORK_SETTINGS
    per_base_unit = Fraction(1, raw_price) if inverted else Fraction(raw_price)
    price_per_unit = per_base_unit * 10**decimals
    expected = fake_derive(
        token_id,
        10**decimals,
        Fraction(amount),
        price_per_unit,
        fake_encoder("P2PKH", receiver),
        network.fee_address,
        network.fee_divisor,
    )
    exch_input = {
        "b0": LOKAD_ID_BASE64,
        "b1": {"op": VERSION_OP},
        "b2": _b64(b"\x00\x01" if inverted else b"\x00\x00"),
        "b3": _b64(raw_price.to_bytes(4, "big")),
        "b4": _b64(receiver),
        "e": {"h": f"funding-{txid}", "i": 0},
    }
    record = {
        "tx": {"h": txid},
        "in": [exch_input] + [{"e": {"h": h, "i": i}} for h, i in spends],
        "out": [
            {"e": {"a": "", "v": 0}},
            {"e": {"a": settlement_address or expected, "v": value}},
        ],
        "slp": {
            "valid": True,
            "detail": {
                "tokenIdHex": token_id,
                "decimals": decimals,
                "outputs": [{"address": "simpleledger:qseller", "amount": amount}],
            },
        },
    }
    if block_time is not None:
        record["blk"] = {"t": block_time}
    return record


def build_spend(txid, spends, *, token_id=TOKEN_ID):
    """A plain token transaction (cancel or take) spending the given outputs."""
    return {
        "tx": {"h": txid},
        "in": [{"b0": "c2lnbmF0dXJl", "b1": "cHVia2V5", "e": {"h": h, "i": i}} for h, i in spends],
        "out": [{"e": {"a": "", "v": 0}}, {"e": {"a": "bitcoincash:qbuyer", "v": 546}}],
        "slp": {
            "valid": True,
            "detail": {"tokenIdHex": token_id, "decimals": 0, "outputs": [{"address": "x", "amount": "1"}]},
        },
    }


@pytest.fixture
def network():
    return DEFAULT_NETWORK_SETTINGS


@pytest.fixture
def derive():
    return fake_derive


@pytest.fixture
def encoder():
    return fake_encoder


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def make_spend():
    return build_spend


@pytest.fixture
def token_id():
    return TOKEN_ID


@pytest.fixture
def other_token_id():
    return OTHER_TOKEN_ID
