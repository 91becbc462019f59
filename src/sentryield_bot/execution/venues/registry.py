"""Lookup of venue adapters by ``AdapterId``."""

from __future__ import annotations

from typing import Dict, Iterator, Mapping, Optional

from ...config.settings import AdapterId, PoolConfig
from ...errors import AdapterNotFoundError
from ...ingestion.evm_rpc import EvmRpcClient
from .base import StrategyAdapter
from .curvance import CurvanceAdapter
from .disabled import DisabledAdapter
from .morpho import MorphoVaultAdapter

_DISABLED_REASONS = {
    AdapterId.GEARBOX: "Gearbox adapter is not deployed on this chain",
    AdapterId.TOWNSQUARE: "TownSquare adapter is not deployed on this chain",
    AdapterId.NEVERLAND: "Neverland adapter is not deployed on this chain",
    AdapterId.DEX1: "DEX LP adapter is not implemented",
}


class AdapterRegistry(Mapping[AdapterId, StrategyAdapter]):
    """Immutable mapping holding exactly one adapter per tag."""

    def __init__(self, adapters: Mapping[AdapterId, StrategyAdapter]) -> None:
        missing = [adapter_id.value for adapter_id in AdapterId if adapter_id not in adapters]
        if missing:
            raise ValueError(f"Adapter registry is missing: {', '.join(missing)}")
        self._adapters: Dict[AdapterId, StrategyAdapter] = dict(adapters)

    def __getitem__(self, adapter_id: AdapterId) -> StrategyAdapter:
        try:
            return self._adapters[AdapterId(adapter_id)]
        except (KeyError, ValueError) as exc:
            raise AdapterNotFoundError(f"No adapter registered for {adapter_id!r}") from exc

    def __iter__(self) -> Iterator[AdapterId]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def for_pool(self, pool: PoolConfig) -> StrategyAdapter:
        return self[pool.adapter_id]


def build_adapter_registry(
    rpc: Optional[EvmRpcClient] = None,
    overrides: Optional[Mapping[AdapterId, StrategyAdapter]] = None,
) -> AdapterRegistry:
    """Return a registry with live Curvance/Morpho adapters and disabled placeholders."""

    client = rpc or EvmRpcClient()
    adapters: Dict[AdapterId, StrategyAdapter] = {
        AdapterId.CURVANCE: CurvanceAdapter(client),
        AdapterId.MORPHO: MorphoVaultAdapter(client),
    }
    for adapter_id, reason in _DISABLED_REASONS.items():
        adapters[adapter_id] = DisabledAdapter(adapter_id, reason)
    if overrides:
        adapters.update(overrides)
    return AdapterRegistry(adapters)


__all__ = ["AdapterRegistry", "build_adapter_registry"]
