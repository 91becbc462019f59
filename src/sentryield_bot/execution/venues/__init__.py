"""Venue adapters for the lending markets the vault can rotate between."""

from .base import StrategyAdapter
from .curvance import CurvanceAdapter, LendingMarketAdapter
from .disabled import DisabledAdapter
from .morpho import MorphoVaultAdapter
from .registry import AdapterRegistry, build_adapter_registry

__all__ = [
    "AdapterRegistry",
    "CurvanceAdapter",
    "DisabledAdapter",
    "LendingMarketAdapter",
    "MorphoVaultAdapter",
    "StrategyAdapter",
    "build_adapter_registry",
]
