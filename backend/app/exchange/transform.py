"""Turn raw indexer transactions into verified offers."""

from __future__ import annotations

from fractions import Fraction
from typing import Any

from .codec import LOKAD_ID_BASE64, VERSION_OP, AddressEncoder, decode_address, decode_price, encode_address
from .interface import RawTxRecord, SettlementAddressDeriver
from .models import Offer, RejectReason, TransformResult, UtxoRef
from .network import NetworkSettings

# The covenant always sits at output 1; output 0 is the SLP OP_RETURN.
COVENANT_VOUT = 1


def find_exchange_input(record: RawTxRecord) -> dict[str, Any] | None:
    """First input (by position) carrying the exchange marker, or None."""
    for tx_input in record.get("in") or ():
        if tx_input.get("b0") != LOKAD_ID_BASE64:
            continue
        version = tx_input.get("b1")
        if isinstance(version, dict) and version.get("op") == VERSION_OP:
            return tx_input
    return None


def spent_outputs(record: RawTxRecord) -> list[UtxoRef]:
    """Outputs consumed by the inputs of a record.

    Inputs without a readable outpoint are skipped; the others still count.
    """
    refs = []
    for tx_input in record.get("in") or ():
        try:
            refs.append(UtxoRef(txid=tx_input["e"]["h"], vout=int(tx_input["e"]["i"])))
        except (KeyError, TypeError, ValueError):
            continue
    return refs


def transform_offer(
    record: RawTxRecord,
    network: NetworkSettings,
    derive: SettlementAddressDeriver,
    *,
    asset_id: str | None = None,
    decimals: int | None = None,
    encoder: AddressEncoder = encode_address,
) -> TransformResult:
    """Check a raw record and build a verified Offer from it.

    Unrelated or malformed transactions are common on the feed, so every
    failure is reported as a rejection rather than raised. The offer is only
    accepted when the settlement address re-derived from its terms matches
    the address actually holding output 1.
    """
    slp = record.get("slp") or {}
    detail = slp.get("detail") or {}
    token_id = detail.get("tokenIdHex")
    if asset_id is not None and token_id != asset_id:
        return TransformResult.rejected(RejectReason.WRONG_ASSET, f"token {token_id}")
    if slp.get("valid") is False:
        return TransformResult.rejected(RejectReason.INVALID_TOKEN_TX)

    exch_input = find_exchange_input(record)
    if exch_input is None:
        return TransformResult.rejected(RejectReason.NO_EXCHANGE_INPUT)

    encoded_power = exch_input.get("b2")
    encoded_price = exch_input.get("b3")
    encoded_receiver = exch_input.get("b4")
    if not (encoded_power and encoded_price and encoded_receiver):
        return TransformResult.rejected(RejectReason.MISSING_FIELDS)

    try:
        if decimals is None:
            decimals = int(detail["decimals"])
        price = decode_price(decimals, encoded_power, encoded_price)

        covenant = record["out"][COVENANT_VOUT]["e"]
        value_held = int(covenant["v"])
        actual_address = covenant["a"]
        sale_amount = Fraction(str(detail["outputs"][0]["amount"]))

        receiving_address = decode_address(encoded_receiver, encoder)

        expected_address = derive(
            detail["tokenIdHex"],
            10**decimals,
            sale_amount,
            price.price_per_unit,
            receiving_address,
            network.fee_address,
            network.fee_divisor,
        )
        txid = record["tx"]["h"]
    except Exception as e:
        # Decoders and the contracts library may raise anything on bad terms
        return TransformResult.rejected(RejectReason.MALFORMED, f"{type(e).__name__}: {e}")

    if expected_address != actual_address:
        return TransformResult.rejected(
            RejectReason.ADDRESS_MISMATCH,
            f"expected {expected_address}, got {actual_address}",
        )

    block = record.get("blk") or {}
    offer = Offer(
        utxo_ref=UtxoRef(txid=txid, vout=COVENANT_VOUT),
        price_per_unit=price.price_per_unit,
        raw_script_price=price.raw_script_price,
        sale_amount=sale_amount,
        value_held=value_held,
        settlement_address=actual_address,
        receiving_address=receiving_address,
        created_at=block.get("t"),
    )
    return TransformResult.accepted(offer)
