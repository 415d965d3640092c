"""SLP exchange subsystem: live offer books and the market overview.

Public API:
    Offer                 - Verified open offer (frozen dataclass)
    OfferBook             - Live, price-sorted offers for one token
    transform_offer       - Raw indexer record -> TransformResult
    MarketOverview        - Merged, sortable, searchable per-token summaries
    SortKey               - Columns accepted by MarketOverview.list_sorted
    IndexerSource         - Abstract interface for indexer backends
    NetworkSettings       - Fee address / divisor baked into covenants
    create_indexer_source - Factory that selects the HTTP or in-memory source
    create_exchange_router - FastAPI router factory (JSON + SSE endpoints)
"""

from .book import OfferBook
from .factory import create_indexer_source, load_settlement_deriver
from .interface import FeedKind, IndexerSource, SettlementAddressDeriver
from .models import AssetMetadata, AssetSummary, Offer, RejectReason, TransformResult, UtxoRef
from .network import DEFAULT_NETWORK_SETTINGS, NetworkSettings, load_network_settings
from .overview import MarketOverview, SortKey
from .stream import create_exchange_router
from .transform import transform_offer

__all__ = [
    "Offer",
    "UtxoRef",
    "TransformResult",
    "RejectReason",
    "AssetMetadata",
    "AssetSummary",
    "OfferBook",
    "transform_offer",
    "MarketOverview",
    "SortKey",
    "FeedKind",
    "IndexerSource",
    "SettlementAddressDeriver",
    "NetworkSettings",
    "DEFAULT_NETWORK_SETTINGS",
    "load_network_settings",
    "create_indexer_source",
    "load_settlement_deriver",
    "create_exchange_router",
]
