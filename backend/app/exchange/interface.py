"""Abstract interface for the blockchain indexing service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from fractions import Fraction
from typing import Any, Callable, Protocol

RawTxRecord = dict[str, Any]
Partitions = dict[str, list[dict[str, Any]]]


class FeedKind(str, Enum):
    """Origin of a live notification batch."""

    MEMPOOL = "mempool"
    BLOCK = "block"


BatchHandler = Callable[[list[RawTxRecord], str], None]


class SettlementAddressDeriver(Protocol):
    """Deterministic covenant address derivation supplied by a contracts library.

    Any exception it raises rejects the offer as malformed.
    """

    def __call__(
        self,
        asset_id: str,
        decimal_factor: int,
        sale_amount: Fraction,
        price_per_unit: Fraction,
        receiving_address: str,
        fee_address: str,
        fee_divisor: int,
    ) -> str: ...


class IndexerSource(ABC):
    """Contract for indexer backends.

    The core never talks to the network itself. Offer books pull a snapshot
    and register a batch handler; the market overview pulls the token list
    and three aggregates, each split into an unconfirmed ("u") and a
    confirmed ("c") partition.

    Lifecycle:
        source = create_indexer_source()
        book = await OfferBook.create(token_id, source, network, derive)
        overview = await MarketOverview.create(source)
        # ... app runs ...
        await source.close()
    """

    @abstractmethod
    async def fetch_snapshot(self, asset_id: str | None) -> list[RawTxRecord]:
        """Return every exchange transaction whose covenant output is still unspent.

        asset_id=None means all tokens.
        """

    @abstractmethod
    async def subscribe(self, asset_id: str | None, handler: BatchHandler) -> None:
        """Start delivering live batches to handler(batch, kind).

        Covers both exchange transactions and any other token transaction
        that may spend an offer's output. The handler is called from the
        event loop and must not block.
        """

    @abstractmethod
    async def fetch_asset_metadata(self) -> list[dict[str, Any]]:
        """Return the token list (id, name, symbol, decimals, circulatingSupply, ...)."""

    @abstractmethod
    async def fetch_trade_totals(self) -> Partitions:
        """Per-token open/closed offer counts and the latest exchange transaction."""

    @abstractmethod
    async def fetch_volume_24h(self, since: float) -> Partitions:
        """Per-token accepted trade count and volumes since the given unix time."""

    @abstractmethod
    async def fetch_price_24h(self, before: float) -> Partitions:
        """Per-token price of the most recent accepted trade before the given unix time."""

    @abstractmethod
    async def close(self) -> None:
        """Stop live subscriptions and release resources. Safe to call twice."""
