"""Adapter for Morpho (MetaMorpho) USDC vaults."""

from __future__ import annotations

from typing import ClassVar

from ...config.settings import AdapterId, PoolConfig
from ...errors import UnsupportedFunctionError
from ...schemas import PoolOnChainState
from ...utils.constants import utc_now
from .curvance import LendingMarketAdapter


class MorphoVaultAdapter(LendingMarketAdapter):
    """MetaMorpho vaults keep no idle cash; withdrawable liquidity comes from ``maxWithdraw``.

    The vault's ``maxWithdraw`` is queried for the adapter target. Vault
    versions without it fall back to ``totalAssets()``.
    """

    adapter_id: ClassVar[AdapterId] = AdapterId.MORPHO

    def fetch_pool_state(self, pool: PoolConfig) -> PoolOnChainState:
        total_assets = int(self._rpc.call(pool.pool, "totalAssets()"))
        try:
            withdrawable = self._rpc.call(pool.pool, "maxWithdraw(address)", (pool.target,))
            liquidity = min(int(withdrawable), total_assets)
        except UnsupportedFunctionError:
            self._logger.debug("%s does not expose maxWithdraw; using totalAssets", pool.id)
            liquidity = total_assets
        return PoolOnChainState(
            pool_id=pool.id,
            tvl_raw=total_assets,
            token_decimals=pool.token_decimals,
            available_liquidity_raw=liquidity,
            fetched_at=utc_now(),
        )


__all__ = ["MorphoVaultAdapter"]
