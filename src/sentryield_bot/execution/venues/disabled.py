"""Placeholder adapter for venues the bot knows about but cannot trade yet."""

from __future__ import annotations

from typing import Optional

from ...config.settings import AdapterId, PoolConfig
from ...errors import AdapterDisabledError
from ...schemas import EnterIntent, ExitIntent, PoolOnChainState, VaultEnterRequest, VaultExitRequest


class DisabledAdapter:
    """Implements the adapter interface but fails every call."""

    def __init__(self, adapter_id: AdapterId, reason: str = "adapter is disabled") -> None:
        self.adapter_id = adapter_id
        self.reason = reason

    def _fail(self, operation: str) -> AdapterDisabledError:
        return AdapterDisabledError(f"{self.adapter_id.value}: {operation} unavailable, {self.reason}")

    def fetch_pool_state(self, pool: PoolConfig) -> PoolOnChainState:
        raise self._fail("fetch_pool_state")

    def estimate_price_impact_bps(
        self,
        pool: PoolConfig,
        amount_in: int,
        state: Optional[PoolOnChainState] = None,
    ) -> float:
        raise self._fail("estimate_price_impact_bps")

    def estimate_rotation_cost_bps(
        self,
        from_pool: PoolConfig,
        to_pool: PoolConfig,
        amount_in: int,
        to_state: Optional[PoolOnChainState] = None,
    ) -> float:
        raise self._fail("estimate_rotation_cost_bps")

    def build_enter_request(self, intent: EnterIntent) -> VaultEnterRequest:
        raise self._fail("build_enter_request")

    def build_exit_request(self, intent: ExitIntent) -> VaultExitRequest:
        raise self._fail("build_exit_request")


__all__ = ["DisabledAdapter"]
