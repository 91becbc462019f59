"""Shared interface for per-venue strategy adapters."""

from __future__ import annotations

from typing import ClassVar, Optional, Protocol

from ...config.settings import AdapterId, PoolConfig
from ...schemas import (
    EnterIntent,
    ExitIntent,
    PoolOnChainState,
    VaultEnterRequest,
    VaultExitRequest,
)


class StrategyAdapter(Protocol):
    """Protocol implemented by every venue adapter, enabled or not."""

    adapter_id: ClassVar[AdapterId]

    def fetch_pool_state(self, pool: PoolConfig) -> PoolOnChainState:
        """Read current TVL and liquidity for ``pool``."""

    def estimate_price_impact_bps(
        self,
        pool: PoolConfig,
        amount_in: int,
        state: Optional[PoolOnChainState] = None,
    ) -> float:
        """Estimate the price impact of moving ``amount_in`` raw units through ``pool``."""

    def estimate_rotation_cost_bps(
        self,
        from_pool: PoolConfig,
        to_pool: PoolConfig,
        amount_in: int,
        to_state: Optional[PoolOnChainState] = None,
    ) -> float:
        """Estimate the one-off cost of leaving ``from_pool`` for ``to_pool``."""

    def build_enter_request(self, intent: EnterIntent) -> VaultEnterRequest:
        """Pure transformation of an enter intent into a call payload."""

    def build_exit_request(self, intent: ExitIntent) -> VaultExitRequest:
        """Pure transformation of an exit intent into a call payload."""


__all__ = [
    "EnterIntent",
    "ExitIntent",
    "PoolOnChainState",
    "StrategyAdapter",
    "VaultEnterRequest",
    "VaultExitRequest",
]
