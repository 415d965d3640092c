"""Decoding of the exchange covenant's price and address fields."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable

from cashaddress import convert

# Protocol marker pushed by every exchange input: b0 = "EXCH", b1 = OP_2
LOKAD_ID = b"EXCH"
LOKAD_ID_BASE64 = base64.b64encode(LOKAD_ID).decode("ascii")  # "RVhDSA=="
VERSION_OP = 0x52

ADDRESS_TYPE_P2PKH = "P2PKH"

AddressEncoder = Callable[[str, bytes], str]


class CodecError(ValueError):
    """Raised when a base64 push cannot be decoded."""


class PriceDecodeError(CodecError):
    """Raised when a covenant price cannot be decoded."""


@dataclass(frozen=True, slots=True)
class DecodedPrice:
    """Price per unit (decimal-scaled) and the raw price stored in the script."""

    price_per_unit: Fraction
    raw_script_price: int


def decode_bytes(token: str) -> bytes:
    """Decode a base64 push from the indexer into raw bytes."""
    try:
        return base64.b64decode(token, validate=True)
    except (binascii.Error, TypeError) as e:
        raise CodecError(f"invalid base64 token {token!r}: {e}") from e


def is_inverted(power: bytes) -> bool:
    """Only a two-byte power whose second byte is 1 marks an inverted price."""
    return len(power) == 2 and power[1] == 1


def decode_price(decimals: int, encoded_power: str, encoded_script_price: str) -> DecodedPrice:
    """Decode the covenant's (power, price) pair.

    The script price is a 4-byte big-endian unsigned integer. When the power
    marks the offer as inverted, the script stores units per satoshi and the
    price per unit is its reciprocal. The result is scaled by 10**decimals and
    kept as an exact Fraction.
    """
    power = decode_bytes(encoded_power)
    price_bytes = decode_bytes(encoded_script_price)
    if len(price_bytes) != 4:
        raise PriceDecodeError(f"script price must be 4 bytes, got {len(price_bytes)}")

    raw = int.from_bytes(price_bytes, "big", signed=False)
    if is_inverted(power):
        if raw == 0:
            raise PriceDecodeError("inverted script price of zero")
        per_base_unit = Fraction(1, raw)
    else:
        per_base_unit = Fraction(raw)

    return DecodedPrice(
        price_per_unit=per_base_unit * 10**decimals,
        raw_script_price=raw,
    )


def encode_address(address_type: str, hash160: bytes) -> str:
    """Encode a hash as a mainnet ``bitcoincash:`` cashaddr."""
    return convert.Address(address_type, list(hash160)).cash_address()


def decode_address(encoded_hash: str, encoder: AddressEncoder = encode_address) -> str:
    """Turn the base64 public-key-hash push into a P2PKH address.

    Hash length is not checked here; the encoder decides what is valid.
    """
    return encoder(ADDRESS_TYPE_P2PKH, decode_bytes(encoded_hash))
