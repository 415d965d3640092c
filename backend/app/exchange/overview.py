"""Market overview: one merged, sortable and searchable summary per token."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Any, Awaitable, Callable

from rapidfuzz import fuzz, utils

from .aggregates import (
    Price24h,
    TradeTotals,
    Volume24h,
    compute_price_delta,
    merge_partitions,
    merge_prices_24h,
    merge_trade_totals,
    merge_volumes,
    parse_price_24h,
    parse_trade_totals,
    parse_volume,
)
from .interface import IndexerSource
from .models import AssetMetadata, AssetSummary, LastTrade

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 3600

# rapidfuzz scores are 0-100; anything below this is not a match
SEARCH_SCORE_CUTOFF = 60.0


class SortKey(str, Enum):
    """Columns the overview can be sorted by."""

    OPEN_OFFERS = "totalNumberOfOpenOffers"
    CLOSED_OFFERS = "totalNumberOfClosedOffers"
    PRICE = "pricePerToken"
    MARKET_CAP = "marketCapSatoshis"
    VOLUME_TOKENS = "volumeTokens"
    VOLUME_VALUE = "volumeSatoshis"
    PRICE_DELTA = "priceIncrease"


_SORTERS: dict[SortKey, Callable[[AssetSummary], int | Fraction | None]] = {
    SortKey.OPEN_OFFERS: lambda s: s.open_offers,
    SortKey.CLOSED_OFFERS: lambda s: s.closed_offers,
    SortKey.PRICE: lambda s: s.last_trade.price_per_unit,
    SortKey.MARKET_CAP: lambda s: s.market_cap,
    SortKey.VOLUME_TOKENS: lambda s: s.volume_tokens,
    SortKey.VOLUME_VALUE: lambda s: s.volume_value,
    SortKey.PRICE_DELTA: lambda s: s.price_delta,
}


@dataclass(frozen=True, slots=True)
class SourceStatus:
    """Outcome of the last fetch of one data source."""

    ok: bool
    error: str | None = None
    refreshed_at: float | None = None


class MarketOverview:
    """Joins the token list with trade totals, 24h volume and the 24h-ago price.

    The token list decides which tokens appear; every listed token gets a full
    AssetSummary even when the other sources know nothing about it. A source
    that fails to load is treated as empty and reported in source_status().
    """

    def __init__(self, source: IndexerSource) -> None:
        self._source = source
        self._metadata: dict[str, AssetMetadata] = {}
        self._trade_totals: dict[str, TradeTotals] = {}
        self._volumes: dict[str, Volume24h] = {}
        self._prices_24h: dict[str, Price24h] = {}
        self._summaries: dict[str, AssetSummary] = {}
        self._status: dict[str, SourceStatus] = {}

    @classmethod
    async def create(cls, source: IndexerSource, now: float | None = None) -> MarketOverview:
        overview = cls(source)
        await overview.refresh(now)
        return overview

    async def refresh(self, now: float | None = None) -> None:
        """Fetch all four sources concurrently, then rebuild the summaries.

        Readers keep seeing the previous state until every fetch has settled;
        the new maps and summaries are swapped in together.
        """
        now = now if now is not None else time.time()
        cutoff = now - DAY_SECONDS
        metadata, trade_totals, volumes, prices_24h = await asyncio.gather(
            self._load("metadata", self._fetch_metadata(), now),
            self._load("trade_totals", self._fetch_trade_totals(), now),
            self._load("volume_24h", self._fetch_volume_24h(cutoff), now),
            self._load("price_24h", self._fetch_price_24h(cutoff), now),
        )
        self._metadata = metadata
        self._trade_totals = trade_totals
        self._volumes = volumes
        self._prices_24h = prices_24h
        self._rebuild()
        logger.info(
            "Market overview refreshed: %d tokens, %d sources failed",
            len(self._summaries),
            sum(1 for status in self._status.values() if not status.ok),
        )

    # --- Fetchers ---

    async def _load(self, name: str, fetch: Awaitable[dict[str, Any]], now: float) -> dict[str, Any]:
        """Await one source. A failed source counts as empty for this build."""
        try:
            result = await fetch
        except Exception as e:
            logger.error("Market overview source %s failed: %s", name, e)
            self._status[name] = SourceStatus(ok=False, error=str(e) or type(e).__name__, refreshed_at=now)
            return {}
        self._status[name] = SourceStatus(ok=True, refreshed_at=now)
        return result

    async def _fetch_metadata(self) -> dict[str, AssetMetadata]:
        metadata: dict[str, AssetMetadata] = {}
        for entry in await self._source.fetch_asset_metadata():
            try:
                details = AssetMetadata.from_json(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping token list entry: %s", e)
                continue
            metadata[details.asset_id] = details
        return metadata

    async def _fetch_trade_totals(self) -> dict[str, TradeTotals]:
        partitions = await self._source.fetch_trade_totals()
        return merge_partitions(partitions, parse_trade_totals, merge_trade_totals)

    async def _fetch_volume_24h(self, since: float) -> dict[str, Volume24h]:
        partitions = await self._source.fetch_volume_24h(since)
        return merge_partitions(partitions, parse_volume, merge_volumes)

    async def _fetch_price_24h(self, before: float) -> dict[str, Price24h]:
        partitions = await self._source.fetch_price_24h(before)
        return merge_partitions(partitions, parse_price_24h, merge_prices_24h)

    # --- Derivation ---

    def _rebuild(self) -> None:
        self._summaries = {
            asset_id: self._summarize(details) for asset_id, details in self._metadata.items()
        }

    def _summarize(self, details: AssetMetadata) -> AssetSummary:
        totals = self._trade_totals.get(details.asset_id)
        volume = self._volumes.get(details.asset_id)
        price_24h_entry = self._prices_24h.get(details.asset_id)

        last_trade = totals.last_trade if totals else LastTrade()
        last_price = last_trade.price_per_unit
        price_24h = price_24h_entry.price_per_unit if price_24h_entry else None

        return AssetSummary(
            asset_id=details.asset_id,
            decimals=details.decimals,
            symbol=details.symbol,
            name=details.name,
            open_offers=totals.open_offers if totals else 0,
            closed_offers=totals.closed_offers if totals else 0,
            total_supply=details.circulating_supply,
            market_cap=last_price * details.circulating_supply if last_price is not None else None,
            last_trade=last_trade,
            trades_24h=volume.trades if volume else 0,
            volume_tokens=volume.volume_tokens if volume else Fraction(0),
            volume_value=volume.volume_value if volume else Fraction(0),
            price_24h=price_24h,
            price_delta=compute_price_delta(last_price, price_24h),
        )

    # --- Queries ---

    def list_sorted(
        self,
        sort_key: SortKey | str,
        offset: int = 0,
        limit: int = 50,
        ascending: bool = False,
    ) -> list[AssetSummary]:
        """One page of summaries ordered by sort_key.

        Summaries whose key is unknown always come last, whatever the
        direction. Equal keys keep token list order.
        """
        try:
            key = SortKey(sort_key)
        except ValueError:
            raise ValueError(f"Unknown sort key: {sort_key}") from None
        sorter = _SORTERS[key]

        known: list[AssetSummary] = []
        unknown: list[AssetSummary] = []
        for summary in self._summaries.values():
            (unknown if sorter(summary) is None else known).append(summary)
        known.sort(key=sorter, reverse=not ascending)

        ordered = known + unknown
        return ordered[offset : offset + limit]

    def search(self, query: str) -> list[AssetSummary]:
        """Exact token id match, else fuzzy match on symbol and name, best first."""
        by_id = self._summaries.get(query)
        if by_id is not None:
            return [by_id]
        if not query.strip():
            return []

        scored: list[tuple[float, AssetSummary]] = []
        for summary in self._summaries.values():
            score = max(
                fuzz.WRatio(query, summary.symbol, processor=utils.default_process),
                fuzz.WRatio(query, summary.name, processor=utils.default_process),
            )
            if score >= SEARCH_SCORE_CUTOFF:
                scored.append((score, summary))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [summary for _, summary in scored]

    def asset_metadata(self, asset_id: str) -> AssetMetadata | None:
        return self._metadata.get(asset_id)

    def summary(self, asset_id: str) -> AssetSummary | None:
        return self._summaries.get(asset_id)

    def summaries(self) -> list[AssetSummary]:
        """All summaries in token list order. Returns a copy."""
        return list(self._summaries.values())

    def source_status(self) -> dict[str, SourceStatus]:
        """Per-source result of the last refresh, to tell a failed source from an empty one."""
        return dict(self._status)

    def __len__(self) -> int:
        return len(self._summaries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": [summary.to_dict() for summary in self._summaries.values()],
            "sources": {
                name: {"ok": status.ok, "error": status.error, "refreshed_at": status.refreshed_at}
                for name, status in self._status.items()
            },
        }
