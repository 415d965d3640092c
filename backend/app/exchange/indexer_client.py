"""SLPDB / SLPSocket indexer client for live chain data."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from .interface import BatchHandler, IndexerSource, Partitions, RawTxRecord
from .network import NetworkSettings
from .queries import (
    encode_query,
    offers_stream_query,
    open_offers_query,
    price_24h_query,
    spends_stream_query,
    trade_totals_query,
    volume_24h_query,
)

logger = logging.getLogger(__name__)

DEFAULT_SLPDB_URL = "https://slpdb.fountainhead.cash"
DEFAULT_SLPSOCKET_URL = "https://slpsocket.fountainhead.cash"
DEFAULT_METADATA_URL = "https://rest.bitcoin.com/v2/slp/list"


class IndexerHttpSource(IndexerSource):
    """IndexerSource backed by the SLPDB REST API and the SLPSocket SSE feed.

    REST:  GET {slpdb}/q/{base64(query)}   → {"u": [...], "c": [...]}
    SSE:   GET {slpsocket}/s/{base64(query)} → data: {"type": "mempool"|"block", "data": [...]}

    Each subscription opens two streams per token: exchange transactions and
    other token transactions that may spend an offer. Streams reconnect with
    exponential backoff; a gap while disconnected is not replayed.
    """

    def __init__(
        self,
        network: NetworkSettings,
        slpdb_url: str = DEFAULT_SLPDB_URL,
        slpsocket_url: str = DEFAULT_SLPSOCKET_URL,
        metadata_url: str = DEFAULT_METADATA_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        max_backoff: float = 30.0,
    ) -> None:
        self._network = network
        self._slpdb_url = slpdb_url.rstrip("/")
        self._slpsocket_url = slpsocket_url.rstrip("/")
        self._metadata_url = metadata_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._max_backoff = max_backoff
        self._tasks: list[asyncio.Task] = []

    # --- Snapshot and aggregates ---

    async def fetch_snapshot(self, asset_id: str | None) -> list[RawTxRecord]:
        data = await self._query(open_offers_query(asset_id))
        # Unconfirmed first, as the indexer returns the freshest state there
        return list(data.get("u") or []) + list(data.get("c") or [])

    async def fetch_asset_metadata(self) -> list[dict[str, Any]]:
        response = await self._client.get(self._metadata_url)
        response.raise_for_status()
        return response.json()

    async def fetch_trade_totals(self) -> Partitions:
        return await self._query(trade_totals_query())

    async def fetch_volume_24h(self, since: float) -> Partitions:
        return await self._query(volume_24h_query(self._network.fee_address_slp, since))

    async def fetch_price_24h(self, before: float) -> Partitions:
        return await self._query(price_24h_query(self._network.fee_address_slp, before))

    async def _query(self, query: dict[str, Any]) -> Partitions:
        response = await self._client.get(f"{self._slpdb_url}/q/{encode_query(query)}")
        response.raise_for_status()
        return response.json()

    # --- Live feed ---

    async def subscribe(self, asset_id: str | None, handler: BatchHandler) -> None:
        for name, query in (("offers", offers_stream_query(asset_id)), ("spends", spends_stream_query(asset_id))):
            url = f"{self._slpsocket_url}/s/{encode_query(query)}"
            task = asyncio.create_task(
                self._stream_loop(url, handler),
                name=f"slpsocket-{name}-{asset_id or 'all'}",
            )
            self._tasks.append(task)
        logger.info("SLPSocket subscriptions started for %s", asset_id or "all tokens")

    async def close(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self._client.aclose()
        logger.info("Indexer source closed")

    async def _stream_loop(self, url: str, handler: BatchHandler) -> None:
        """Keep one SSE stream open, reconnecting with exponential backoff."""
        backoff = min(1.0, self._max_backoff)
        while True:
            try:
                await self._stream_once(url, handler)
                backoff = min(1.0, self._max_backoff)
                logger.info("SLPSocket stream ended, reconnecting")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("SLPSocket stream failed: %s (retrying in %.0fs)", e, backoff)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self._max_backoff)

    async def _stream_once(self, url: str, handler: BatchHandler) -> None:
        timeout = httpx.Timeout(self._client.timeout.connect, read=None)
        headers = {"Accept": "text/event-stream"}
        async with self._client.stream("GET", url, headers=headers, timeout=timeout) as response:
            response.raise_for_status()
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if line.startswith("data:"):
                    data_lines.append(line[5:].lstrip())
                elif not line and data_lines:
                    self._dispatch("\n".join(data_lines), handler)
                    data_lines = []
            if data_lines:
                self._dispatch("\n".join(data_lines), handler)

    @staticmethod
    def _dispatch(payload: str, handler: BatchHandler) -> None:
        """Decode one SSE event and hand its transactions to the handler."""
        try:
            message = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("Skipping undecodable SLPSocket event: %s", e)
            return
        if not isinstance(message, dict):
            return
        batch = message.get("data")
        kind = message.get("type")
        # "open" / heartbeat events carry no transactions
        if not isinstance(batch, list) or not batch:
            return
        try:
            handler(batch, kind)
        except Exception:
            logger.exception("SLPSocket batch handler failed")
