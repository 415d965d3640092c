"""Factory for creating indexer sources and resolving the contract deriver."""

from __future__ import annotations

import importlib
import logging
import os

from .interface import IndexerSource, SettlementAddressDeriver
from .network import NetworkSettings, load_network_settings

logger = logging.getLogger(__name__)


def create_indexer_source(network: NetworkSettings | None = None) -> IndexerSource:
    """Create the indexer source selected by environment variables.

    - EXCHANGE_OFFLINE set and non-empty → InMemoryIndexerSource (no network)
    - Otherwise → IndexerHttpSource, with SLPDB_URL / SLPSOCKET_URL /
      SLP_METADATA_URL overriding the public endpoints

    Returns a ready source. Caller must await source.close() on shutdown.
    """
    offline = os.environ.get("EXCHANGE_OFFLINE", "").strip()

    if offline:
        from .memory_source import InMemoryIndexerSource

        logger.info("Indexer source: in-memory (offline)")
        return InMemoryIndexerSource()

    from .indexer_client import (
        DEFAULT_METADATA_URL,
        DEFAULT_SLPDB_URL,
        DEFAULT_SLPSOCKET_URL,
        IndexerHttpSource,
    )

    slpdb_url = os.environ.get("SLPDB_URL", "").strip() or DEFAULT_SLPDB_URL
    slpsocket_url = os.environ.get("SLPSOCKET_URL", "").strip() or DEFAULT_SLPSOCKET_URL
    metadata_url = os.environ.get("SLP_METADATA_URL", "").strip() or DEFAULT_METADATA_URL

    logger.info("Indexer source: SLPDB at %s", slpdb_url)
    return IndexerHttpSource(
        network=network or load_network_settings(),
        slpdb_url=slpdb_url,
        slpsocket_url=slpsocket_url,
        metadata_url=metadata_url,
    )


def load_settlement_deriver() -> SettlementAddressDeriver:
    """Resolve the settlement address deriver named by EXCHANGE_ADDRESS_DERIVER.

    The value is a "package.module:attribute" path to a callable implementing
    SettlementAddressDeriver. It is imported lazily so that the contracts
    library is only required when offer books are actually built.
    """
    path = os.environ.get("EXCHANGE_ADDRESS_DERIVER", "").strip()
    if not path:
        raise RuntimeError("EXCHANGE_ADDRESS_DERIVER is not set; offer books cannot verify covenants")

    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise RuntimeError(f"EXCHANGE_ADDRESS_DERIVER must look like 'module:attribute', got {path!r}")

    module = importlib.import_module(module_name)
    derive = getattr(module, attribute)
    if not callable(derive):
        raise RuntimeError(f"{path} is not callable")
    logger.info("Settlement address deriver: %s", path)
    return derive
