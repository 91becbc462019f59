"""Shared constants for yield math and EVM address handling."""

import re
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


BPS = 10_000
SECONDS_PER_YEAR = 365 * 24 * 60 * 60
HOURS_PER_YEAR = 365 * 24

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# Monad mainnet deployment the default pool catalogue points at.
MONAD_CHAIN_ID = 143
MONAD_RPC_URL = "https://rpc.monad.xyz"
USDC_TOKEN_ADDRESS = "0x754704Bc059F8C67012fEd69BC8A327a5aafb603"
USDC_DECIMALS = 6
CURVANCE_USDC_MARKET = "0x21aDBb60a5fB909e7F1fB48aACC4569615CD97b5"
CURVANCE_USDC_MARKET_8EE9 = "0x8EE9FC28B8Da872c38A496e9dDB9700bb7261774"
CURVANCE_USDC_MARKET_7C9D = "0x7C9d4f1695C6282Da5e5509Aa51fC9fb417C6f1d"


def is_hex_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def is_zero_address(address: str) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


__all__ = [
    "BPS",
    "CURVANCE_USDC_MARKET",
    "CURVANCE_USDC_MARKET_7C9D",
    "CURVANCE_USDC_MARKET_8EE9",
    "HOURS_PER_YEAR",
    "MONAD_CHAIN_ID",
    "MONAD_RPC_URL",
    "SECONDS_PER_YEAR",
    "USDC_DECIMALS",
    "USDC_TOKEN_ADDRESS",
    "ZERO_ADDRESS",
    "is_hex_address",
    "is_zero_address",
    "utc_now",
]
