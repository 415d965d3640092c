"""In-process indexer source for offline runs and tests."""

from __future__ import annotations

import logging
from typing import Any

from .interface import BatchHandler, FeedKind, IndexerSource, Partitions, RawTxRecord

logger = logging.getLogger(__name__)


def _token_of(record: RawTxRecord) -> str | None:
    try:
        return record["slp"]["detail"]["tokenIdHex"]
    except (KeyError, TypeError):
        return None


class InMemoryIndexerSource(IndexerSource):
    """IndexerSource whose data is set directly by the caller.

    Snapshot records, the token list and the aggregate partitions are plain
    attributes. publish() delivers a live batch to every subscriber of the
    batch's tokens, synchronously, the same way the HTTP source delivers
    SLPSocket events from its stream tasks.
    """

    def __init__(
        self,
        snapshot: list[RawTxRecord] | None = None,
        metadata: list[dict[str, Any]] | None = None,
        trade_totals: Partitions | None = None,
        volume_24h: Partitions | None = None,
        price_24h: Partitions | None = None,
    ) -> None:
        self.snapshot: list[RawTxRecord] = list(snapshot or [])
        self.metadata: list[dict[str, Any]] = list(metadata or [])
        self.trade_totals: Partitions = dict(trade_totals or {})
        self.volume_24h: Partitions = dict(volume_24h or {})
        self.price_24h: Partitions = dict(price_24h or {})
        self.volume_since: float | None = None
        self.price_before: float | None = None
        self._subscribers: list[tuple[str | None, BatchHandler]] = []
        self._closed = False

    async def fetch_snapshot(self, asset_id: str | None) -> list[RawTxRecord]:
        return [r for r in self.snapshot if asset_id is None or _token_of(r) == asset_id]

    async def subscribe(self, asset_id: str | None, handler: BatchHandler) -> None:
        self._subscribers.append((asset_id, handler))
        logger.info("In-memory subscription added for %s", asset_id or "all tokens")

    async def fetch_asset_metadata(self) -> list[dict[str, Any]]:
        return list(self.metadata)

    async def fetch_trade_totals(self) -> Partitions:
        return self.trade_totals

    async def fetch_volume_24h(self, since: float) -> Partitions:
        self.volume_since = since
        return self.volume_24h

    async def fetch_price_24h(self, before: float) -> Partitions:
        self.price_before = before
        return self.price_24h

    async def close(self) -> None:
        self._subscribers.clear()
        self._closed = True

    def publish(self, batch: list[RawTxRecord], kind: str = FeedKind.MEMPOOL) -> None:
        """Deliver a batch to subscribers.

        A subscriber filtered on a token receives the batch when any record
        in it belongs to that token.
        """
        if self._closed:
            return
        tokens = {_token_of(record) for record in batch}
        for asset_id, handler in list(self._subscribers):
            if asset_id is None or asset_id in tokens:
                handler(list(batch), kind)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
