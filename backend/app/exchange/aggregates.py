"""Per-token aggregates from the indexer and the rules for merging them.

The indexer answers every aggregate query twice: once over unconfirmed
transactions ("u") and once over confirmed ones ("c"). Each aggregate kind
has its own merge function; all of them keep the union of token ids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Callable, Iterable, TypeVar

from .codec import decode_price
from .interface import Partitions
from .models import LastTrade

logger = logging.getLogger(__name__)

UNCONFIRMED = "u"
CONFIRMED = "c"

T = TypeVar("T")


def to_fraction(value: Any) -> Fraction:
    """Exact value of a number as returned by the indexer.

    Accepts ints, floats, numeric strings and Mongo's {"$numberDecimal": "..."}.
    """
    if isinstance(value, dict):
        value = value["$numberDecimal"]
    if value is None:
        return Fraction(0)
    if isinstance(value, int):
        return Fraction(value)
    return Fraction(str(value))


@dataclass(frozen=True, slots=True)
class TradeTotals:
    open_offers: int
    closed_offers: int
    last_trade: LastTrade


@dataclass(frozen=True, slots=True)
class Volume24h:
    trades: int
    volume_tokens: Fraction
    volume_value: Fraction


@dataclass(frozen=True, slots=True)
class Price24h:
    price_per_unit: Fraction
    timestamp: int | None = None


# --- Parsing ---


def _decode_entry_price(entry: dict[str, Any]) -> Fraction | None:
    power = entry.get("power")
    price = entry.get("price")
    if power is None or price is None:
        return None
    try:
        return decode_price(int(entry.get("decimals") or 0), power, price).price_per_unit
    except ValueError as e:
        logger.debug("Undecodable price for %s: %s", entry.get("_id"), e)
        return None


def parse_trade_totals(entry: dict[str, Any]) -> TradeTotals:
    last = entry.get("lastTrade") or {}
    price_entry = {"decimals": entry.get("decimals"), "_id": entry.get("_id"), **last}
    return TradeTotals(
        open_offers=int(entry.get("numberOfOpenOffers") or 0),
        closed_offers=int(entry.get("numberOfClosedOffers") or 0),
        last_trade=LastTrade(
            timestamp=last.get("timestamp"),
            price_per_unit=_decode_entry_price(price_entry),
            is_accepted=last.get("isAccepted"),
        ),
    )


def parse_volume(entry: dict[str, Any]) -> Volume24h:
    return Volume24h(
        trades=int(entry.get("numberOfTrades") or 0),
        volume_tokens=to_fraction(entry.get("volumeTokens")),
        volume_value=to_fraction(entry.get("volumeSatoshis")),
    )


def parse_price_24h(entry: dict[str, Any]) -> Price24h | None:
    price = _decode_entry_price(entry)
    if price is None:
        return None
    return Price24h(price_per_unit=price, timestamp=entry.get("timestamp"))


def index_partition(
    entries: Iterable[dict[str, Any]],
    parse: Callable[[dict[str, Any]], T | None],
) -> dict[str, T]:
    """Key parsed entries by token id, skipping those that fail to parse."""
    result: dict[str, T] = {}
    for entry in entries:
        try:
            token_id = entry["_id"]
            parsed = parse(entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Skipping aggregate entry: %s", e)
            continue
        if parsed is not None:
            result[token_id] = parsed
    return result


# --- Merging ---


def _recency(last_trade: LastTrade) -> float:
    # Unconfirmed transactions carry no block time and are newer than any confirmed one.
    return float("inf") if last_trade.timestamp is None else float(last_trade.timestamp)


def merge_trade_totals(unconfirmed: TradeTotals, confirmed: TradeTotals) -> TradeTotals:
    """Counts add up; the more recent last trade wins, unconfirmed on a tie."""
    if _recency(confirmed.last_trade) > _recency(unconfirmed.last_trade):
        last_trade = confirmed.last_trade
    else:
        last_trade = unconfirmed.last_trade
    return TradeTotals(
        open_offers=unconfirmed.open_offers + confirmed.open_offers,
        closed_offers=unconfirmed.closed_offers + confirmed.closed_offers,
        last_trade=last_trade,
    )


def merge_volumes(a: Volume24h, b: Volume24h) -> Volume24h:
    """Purely additive."""
    return Volume24h(
        trades=a.trades + b.trades,
        volume_tokens=a.volume_tokens + b.volume_tokens,
        volume_value=a.volume_value + b.volume_value,
    )


def merge_prices_24h(a: Price24h, b: Price24h) -> Price24h:
    """Later timestamp wins when both are known, otherwise the first one is kept."""
    if a.timestamp is not None and b.timestamp is not None and b.timestamp > a.timestamp:
        return b
    return a


def merge_maps(first: dict[str, T], second: dict[str, T], merge: Callable[[T, T], T]) -> dict[str, T]:
    """Union of both key sets; keys present in both are combined with merge(first, second)."""
    merged = dict(first)
    for key, item in second.items():
        merged[key] = merge(merged[key], item) if key in merged else item
    return merged


def merge_partitions(
    partitions: Partitions,
    parse: Callable[[dict[str, Any]], T | None],
    merge: Callable[[T, T], T],
) -> dict[str, T]:
    """Parse the "u" and "c" partitions and merge them as merge(u_entry, c_entry)."""
    unconfirmed = index_partition(partitions.get(UNCONFIRMED) or (), parse)
    confirmed = index_partition(partitions.get(CONFIRMED) or (), parse)
    return merge_maps(unconfirmed, confirmed, merge)


def compute_price_delta(last_price: Fraction | None, price_24h: Fraction | None) -> Fraction | None:
    """Relative change from the 24h-ago price to the last trade.

    - both known      → last / price_24h - 1
    - only price_24h  → 0 (a baseline exists but nothing traded since)
    - otherwise       → None (unknown)
    """
    if price_24h is None:
        return None
    if last_price is None:
        return Fraction(0)
    if price_24h == 0:
        return None
    return last_price / price_24h - 1
