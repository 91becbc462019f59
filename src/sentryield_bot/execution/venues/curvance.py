"""Adapter for ERC-4626 style lending markets, with Curvance as the reference venue."""

from __future__ import annotations

from typing import ClassVar, Optional

from ...config.settings import AdapterId, PoolConfig
from ...ingestion.evm_rpc import EvmRpcClient, encode_words
from ...monitoring.logger import get_logger
from ...schemas import EnterIntent, ExitIntent, PoolOnChainState, VaultEnterRequest, VaultExitRequest
from ...utils.constants import BPS, utc_now
from .base import StrategyAdapter

# Upper bound for the impact estimate of a market with idle liquidity.
MAX_IMPACT_BPS = 5_000.0


class LendingMarketAdapter(StrategyAdapter):
    """Reads ``totalAssets()`` and idle cash from a single-asset lending market.

    Deposits into a lending market do not move a price, so the impact estimate
    models the exit side instead: how much of the market's idle liquidity the
    position would consume when withdrawn.
    """

    adapter_id: ClassVar[AdapterId] = AdapterId.CURVANCE

    def __init__(self, rpc: EvmRpcClient) -> None:
        self._rpc = rpc
        self._logger = get_logger(__name__)

    def fetch_pool_state(self, pool: PoolConfig) -> PoolOnChainState:
        total_assets = self._rpc.call(pool.pool, "totalAssets()")
        idle = self._rpc.balance_of(pool.token_in, pool.pool)
        state = PoolOnChainState(
            pool_id=pool.id,
            tvl_raw=int(total_assets),
            token_decimals=pool.token_decimals,
            available_liquidity_raw=int(idle),
            fetched_at=utc_now(),
        )
        self._logger.debug(
            "Fetched %s state: tvl=%s idle=%s", pool.id, state.tvl_tokens, state.available_liquidity_tokens
        )
        return state

    def estimate_price_impact_bps(
        self,
        pool: PoolConfig,
        amount_in: int,
        state: Optional[PoolOnChainState] = None,
    ) -> float:
        if amount_in <= 0:
            return 0.0
        current = state or self.fetch_pool_state(pool)
        liquidity = current.available_liquidity_raw
        if liquidity <= 0:
            return float(BPS)
        ratio = min(amount_in / liquidity, 1.0)
        return round(min(ratio * BPS, MAX_IMPACT_BPS), 2)

    def estimate_rotation_cost_bps(
        self,
        from_pool: PoolConfig,
        to_pool: PoolConfig,
        amount_in: int,
        to_state: Optional[PoolOnChainState] = None,
    ) -> float:
        return from_pool.rotation_cost_bps + self.estimate_price_impact_bps(to_pool, amount_in, to_state)

    def build_enter_request(self, intent: EnterIntent) -> VaultEnterRequest:
        pool = intent.pool
        return VaultEnterRequest(
            target=pool.target,
            pool=pool.pool,
            token_in=pool.token_in,
            lp_token=pool.lp_token,
            amount_in=intent.amount_in,
            min_out=intent.min_out,
            deadline=intent.deadline,
            data=self._encode_data(pool, intent.amount_in, intent.min_out),
            pair=pool.pair.value,
            protocol=pool.protocol,
            net_apy_bps=intent.net_apy_bps,
            intended_hold_seconds=intent.intended_hold_seconds,
        )

    def build_exit_request(self, intent: ExitIntent) -> VaultExitRequest:
        pool = intent.pool
        return VaultExitRequest(
            target=pool.target,
            pool=pool.pool,
            lp_token=pool.lp_token,
            token_out=intent.token_out,
            amount_in=intent.amount_in,
            min_out=intent.min_out,
            deadline=intent.deadline,
            data=self._encode_data(pool, intent.amount_in, intent.min_out),
            pair=pool.pair.value,
            protocol=pool.protocol,
        )

    def _encode_data(self, pool: PoolConfig, amount: int, min_out: int) -> str:
        return "0x" + encode_words((pool.pool, int(amount), int(min_out)))


class CurvanceAdapter(LendingMarketAdapter):
    """Curvance cToken markets."""

    adapter_id: ClassVar[AdapterId] = AdapterId.CURVANCE


__all__ = ["CurvanceAdapter", "LendingMarketAdapter", "MAX_IMPACT_BPS"]
