"""Data models for offers and the market overview."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any


def _num(value: Fraction | None) -> float | None:
    """JSON-friendly rendering of an exact value."""
    return float(value) if value is not None else None


@dataclass(frozen=True, slots=True)
class UtxoRef:
    """Reference to a transaction output: (txid, vout)."""

    txid: str
    vout: int

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True, slots=True)
class Offer:
    """An open sell offer backed by an unspent covenant output.

    Only built by transform_offer() after the settlement address has been
    re-derived from the offer terms and matched against the output.
    """

    utxo_ref: UtxoRef
    price_per_unit: Fraction  # satoshis per whole token
    raw_script_price: int
    sale_amount: Fraction
    value_held: int  # satoshis locked in the covenant output
    settlement_address: str
    receiving_address: str
    created_at: int | None = None  # block time, None while unconfirmed

    @property
    def is_confirmed(self) -> bool:
        return self.created_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON / SSE transmission."""
        return {
            "txid": self.utxo_ref.txid,
            "vout": self.utxo_ref.vout,
            "price_per_unit": float(self.price_per_unit),
            "raw_script_price": self.raw_script_price,
            "sale_amount": float(self.sale_amount),
            "value_held": self.value_held,
            "settlement_address": self.settlement_address,
            "receiving_address": self.receiving_address,
            "created_at": self.created_at,
        }


class RejectReason(str, Enum):
    """Why a raw transaction record did not produce an offer."""

    WRONG_ASSET = "wrong_asset"
    INVALID_TOKEN_TX = "invalid_token_tx"
    NO_EXCHANGE_INPUT = "no_exchange_input"
    MISSING_FIELDS = "missing_fields"
    MALFORMED = "malformed"
    ADDRESS_MISMATCH = "address_mismatch"


@dataclass(frozen=True, slots=True)
class TransformResult:
    """Either a verified offer or the reason the record was rejected."""

    offer: Offer | None = None
    reason: RejectReason | None = None
    detail: str = ""

    @classmethod
    def accepted(cls, offer: Offer) -> TransformResult:
        return cls(offer=offer)

    @classmethod
    def rejected(cls, reason: RejectReason, detail: str = "") -> TransformResult:
        return cls(reason=reason, detail=detail)

    @property
    def ok(self) -> bool:
        return self.offer is not None


@dataclass(frozen=True, slots=True)
class AssetMetadata:
    """Static descriptive fields of a listed token."""

    asset_id: str
    name: str
    symbol: str
    decimals: int
    circulating_supply: Fraction
    document_uri: str = ""
    timestamp_unix: int | None = None
    minting_baton_status: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AssetMetadata:
        """Build from one entry of the token list endpoint."""
        supply = data.get("circulatingSupply") or 0
        return cls(
            asset_id=data["id"],
            name=data.get("name") or "",
            symbol=data.get("symbol") or "",
            decimals=int(data.get("decimals") or 0),
            circulating_supply=Fraction(str(supply)),
            document_uri=data.get("documentUri") or "",
            timestamp_unix=data.get("timestampUnix"),
            minting_baton_status=data.get("mintingBatonStatus"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_id": self.asset_id,
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "circulating_supply": float(self.circulating_supply),
            "document_uri": self.document_uri,
            "timestamp_unix": self.timestamp_unix,
            "minting_baton_status": self.minting_baton_status,
        }


@dataclass(frozen=True, slots=True)
class LastTrade:
    """Most recent exchange transaction seen for a token. All fields may be unknown."""

    timestamp: int | None = None
    price_per_unit: Fraction | None = None
    is_accepted: bool | None = None


@dataclass(frozen=True, slots=True)
class AssetSummary:
    """One row of the market overview."""

    asset_id: str
    decimals: int
    symbol: str
    name: str
    open_offers: int = 0
    closed_offers: int = 0
    total_supply: Fraction = Fraction(0)
    market_cap: Fraction | None = None
    last_trade: LastTrade = field(default_factory=LastTrade)
    trades_24h: int = 0
    volume_tokens: Fraction = Fraction(0)
    volume_value: Fraction = Fraction(0)
    price_24h: Fraction | None = None
    price_delta: Fraction | None = None

    @property
    def price_per_unit(self) -> Fraction | None:
        return self.last_trade.price_per_unit

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON transmission."""
        return {
            "token_id": self.asset_id,
            "decimals": self.decimals,
            "symbol": self.symbol,
            "name": self.name,
            "open_offers": self.open_offers,
            "closed_offers": self.closed_offers,
            "total_supply": float(self.total_supply),
            "market_cap": _num(self.market_cap),
            "last_trade": {
                "timestamp": self.last_trade.timestamp,
                "price_per_unit": _num(self.last_trade.price_per_unit),
                "is_accepted": self.last_trade.is_accepted,
            },
            "last_24h": {
                "trades": self.trades_24h,
                "volume_tokens": float(self.volume_tokens),
                "volume_value": float(self.volume_value),
                "price_per_unit": _num(self.price_24h),
                "price_delta": _num(self.price_delta),
            },
        }
