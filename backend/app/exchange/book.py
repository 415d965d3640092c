"""Live, verified order book for a single token."""

from __future__ import annotations

import logging
from typing import Callable, Collection, Iterable

from .codec import AddressEncoder, encode_address
from .interface import FeedKind, IndexerSource, RawTxRecord, SettlementAddressDeriver
from .models import Offer, UtxoRef
from .network import NetworkSettings
from .transform import find_exchange_input, spent_outputs, transform_offer

logger = logging.getLogger(__name__)

Observer = Callable[[], None]


class OfferBook:
    """In-memory set of open offers for one token, sorted by price ascending.

    Writers: the snapshot load and the live mempool feed, both on the event loop.
    Readers: any number of observers and the SSE endpoint via current_offers().

    Each covenant output moves unknown -> open -> closed and never back, so an
    offer seen spent is never re-opened by a late or duplicated record. Only
    outputs that were open are remembered as closed; an output created and
    spent within one batch is never opened.
    """

    def __init__(
        self,
        asset_id: str,
        source: IndexerSource,
        network: NetworkSettings,
        derive: SettlementAddressDeriver,
        encoder: AddressEncoder = encode_address,
    ) -> None:
        self._asset_id = asset_id
        self._source = source
        self._network = network
        self._derive = derive
        self._encoder = encoder
        self._open: dict[UtxoRef, Offer] = {}  # insertion order = arrival order
        self._closed: set[UtxoRef] = set()
        self._sorted: list[Offer] = []
        self._observers: list[Observer] = []
        self._pending: list[list[RawTxRecord]] | None = None
        self._version: int = 0  # bumped once per processed batch

    @classmethod
    async def create(
        cls,
        asset_id: str,
        source: IndexerSource,
        network: NetworkSettings,
        derive: SettlementAddressDeriver,
        encoder: AddressEncoder = encode_address,
    ) -> OfferBook:
        """Build a book, subscribe to the live feed and load the snapshot."""
        book = cls(asset_id, source, network, derive, encoder)
        await book.start()
        return book

    async def start(self) -> None:
        """Subscribe first, then load the snapshot.

        Batches arriving while the snapshot is in flight are held back and
        replayed in order once it has been merged, so no spend is lost.
        """
        self._pending = []
        await self._source.subscribe(self._asset_id, self.handle_message)
        try:
            records = await self._source.fetch_snapshot(self._asset_id)
            self.load_snapshot(records)
        finally:
            pending, self._pending = self._pending, None
        for batch in pending:
            self.apply_batch(batch)
        logger.info("Offer book for %s started with %d offers", self._asset_id, len(self._sorted))

    # --- Ingestion ---

    def load_snapshot(self, records: Iterable[RawTxRecord]) -> None:
        """Add every valid offer of a snapshot, then sort and notify."""
        for record in records:
            self._insert(record)
        self._resort()
        self._notify()

    def handle_message(self, batch: list[RawTxRecord], kind: str) -> None:
        """Batch handler registered with the indexer source.

        Only mempool batches change the book. Block batches repeat what the
        snapshot and the mempool feed already delivered.
        """
        if kind != FeedKind.MEMPOOL:
            logger.debug("Ignoring %s batch of %d records for %s", kind, len(batch), self._asset_id)
            return
        if self._pending is not None:
            self._pending.append(list(batch))
            return
        self.apply_batch(batch)

    def apply_batch(self, batch: Iterable[RawTxRecord]) -> None:
        """Apply one notification batch: close spent outputs, add new offers, re-sort, notify.

        The book is re-sorted and observers are notified even if a record
        raises part way through, so readers never see a half-applied batch.
        """
        batch = list(batch)
        try:
            # Any transaction may spend an offer, exchange or not.
            spent: set[UtxoRef] = set()
            for record in batch:
                try:
                    spent.update(spent_outputs(record))
                except (AttributeError, TypeError) as e:
                    logger.debug("Skipping record with unreadable inputs: %s", e)

            # Only outputs that were open are remembered, so unrelated spends cost nothing.
            for ref in spent:
                if self._open.pop(ref, None) is not None:
                    self._closed.add(ref)
                    logger.debug("Offer %s closed", ref)

            for record in batch:
                try:
                    has_marker = find_exchange_input(record) is not None
                except (AttributeError, TypeError) as e:
                    logger.debug("Skipping malformed record: %s", e)
                    continue
                if has_marker:
                    self._insert(record, spent)
        finally:
            self._resort()
            self._notify()

    # --- Readers ---

    def current_offers(self) -> list[Offer]:
        """Snapshot of the open offers, cheapest first. Returns a copy."""
        return list(self._sorted)

    def on_change(self, observer: Observer) -> None:
        """Register a callback run after every processed batch, in registration order."""
        self._observers.append(observer)

    def get(self, utxo_ref: UtxoRef) -> Offer | None:
        return self._open.get(utxo_ref)

    @property
    def asset_id(self) -> str:
        return self._asset_id

    @property
    def version(self) -> int:
        """Current version counter. Useful for SSE change detection."""
        return self._version

    def __len__(self) -> int:
        return len(self._open)

    def __contains__(self, utxo_ref: UtxoRef) -> bool:
        return utxo_ref in self._open

    # --- Internal ---

    def _insert(self, record: RawTxRecord, spent: Collection[UtxoRef] = ()) -> None:
        try:
            result = transform_offer(
                record,
                self._network,
                self._derive,
                asset_id=self._asset_id,
                encoder=self._encoder,
            )
        except (AttributeError, TypeError) as e:
            logger.debug("Skipping malformed record: %s", e)
            return
        if not result.ok:
            logger.debug("Rejected record for %s: %s %s", self._asset_id, result.reason.value, result.detail)
            return
        offer = result.offer
        ref = offer.utxo_ref
        if ref in self._open or ref in self._closed or ref in spent:
            return
        self._open[ref] = offer

    def _resort(self) -> None:
        # sorted() is stable, so equal prices keep arrival order
        self._sorted = sorted(self._open.values(), key=lambda offer: offer.price_per_unit)
        self._version += 1

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer()
            except Exception:
                logger.exception("Offer book observer failed for %s", self._asset_id)
