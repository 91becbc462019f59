"""Strategy package exports."""

from .controls import ControlAction, ControlRequest, ControlState
from .guards import SnapshotHistory, apr_cliff_guard, depeg_guard, slippage_guard
from .rotation import RotationEngine, TickInputs

__all__ = [
    "ControlAction",
    "ControlRequest",
    "ControlState",
    "RotationEngine",
    "SnapshotHistory",
    "TickInputs",
    "apr_cliff_guard",
    "depeg_guard",
    "slippage_guard",
]
