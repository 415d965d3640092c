"""Network fee settings baked into every exchange covenant."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NetworkSettings:
    """Fee split configuration shared by all offers on a network."""

    fee_address: str
    fee_address_slp: str
    fee_divisor: int


DEFAULT_NETWORK_SETTINGS = NetworkSettings(
    fee_address="bitcoincash:qp5x5tmxluwm62ny66zy9u4zuqvkmcv8sq2ceuxmwd",
    fee_address_slp="simpleledger:qp5x5tmxluwm62ny66zy9u4zuqvkmcv8sqxrj8nmsn",
    fee_divisor=500,
)


def load_network_settings() -> NetworkSettings:
    """Build NetworkSettings from the environment, falling back to the defaults.

    - EXCHANGE_FEE_ADDRESS      → fee_address
    - EXCHANGE_FEE_ADDRESS_SLP  → fee_address_slp
    - EXCHANGE_FEE_DIVISOR      → fee_divisor (positive integer)
    """
    defaults = DEFAULT_NETWORK_SETTINGS
    fee_address = os.environ.get("EXCHANGE_FEE_ADDRESS", "").strip() or defaults.fee_address
    fee_address_slp = os.environ.get("EXCHANGE_FEE_ADDRESS_SLP", "").strip() or defaults.fee_address_slp

    divisor_raw = os.environ.get("EXCHANGE_FEE_DIVISOR", "").strip()
    fee_divisor = int(divisor_raw) if divisor_raw else defaults.fee_divisor
    if fee_divisor <= 0:
        raise ValueError(f"EXCHANGE_FEE_DIVISOR must be positive, got {fee_divisor}")

    settings = NetworkSettings(
        fee_address=fee_address,
        fee_address_slp=fee_address_slp,
        fee_divisor=fee_divisor,
    )
    if settings != defaults:
        logger.info("Using custom network fee settings: divisor=%d", settings.fee_divisor)
    return settings
