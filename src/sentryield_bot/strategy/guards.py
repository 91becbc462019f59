"""Risk circuit-breakers evaluated before any yield comparison."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Mapping, Optional

from ..analysis.yield_math import round_bps
from ..schemas import GuardReason, GuardResult, PoolSnapshot
from ..utils.constants import BPS


def deviation_bps_from_dollar(price: float) -> int:
    return round_bps(abs(price - 1.0) * BPS)


def depeg_guard(stable_prices_usd: Mapping[str, float], max_deviation_bps: float) -> GuardResult:
    """Trip when any stable drifts more than ``max_deviation_bps`` from $1.

    An empty price set is treated as the worst case.
    """

    if not stable_prices_usd:
        return GuardResult(
            triggered=True,
            reason=GuardReason.DEPEG_GUARD_TRIGGERED,
            details="No stable prices available.",
        )
    deviations = {symbol: deviation_bps_from_dollar(price) for symbol, price in stable_prices_usd.items()}
    if any(bps > max_deviation_bps for bps in deviations.values()):
        return GuardResult(
            triggered=True,
            reason=GuardReason.DEPEG_GUARD_TRIGGERED,
            details=", ".join(f"{symbol} deviation={bps}bps" for symbol, bps in deviations.items()),
        )
    return GuardResult(triggered=False, reason=GuardReason.DEPEG_GUARD_OK)


def slippage_guard(snapshot: PoolSnapshot, max_price_impact_bps: float) -> GuardResult:
    if snapshot.slippage_bps > max_price_impact_bps:
        return GuardResult(
            triggered=True,
            reason=GuardReason.SLIPPAGE_GUARD_TRIGGERED,
            details=(
                f"pool={snapshot.pool_id}, impact={snapshot.slippage_bps}bps, "
                f"max={max_price_impact_bps}bps"
            ),
        )
    return GuardResult(triggered=False, reason=GuardReason.SLIPPAGE_GUARD_OK)


def apr_cliff_guard(
    current: Optional[PoolSnapshot],
    previous: Optional[PoolSnapshot],
    min_drop_bps: float,
) -> GuardResult:
    """Trip when the incentive APR fell by more than ``min_drop_bps`` since last tick.

    Without a non-zero baseline the guard cannot judge and stays quiet.
    """

    if current is None or previous is None:
        return GuardResult(triggered=False, reason=GuardReason.APR_CLIFF_GUARD_NOT_ENOUGH_DATA)
    previous_incentive = previous.incentive_apr_bps
    if previous_incentive <= 0:
        return GuardResult(triggered=False, reason=GuardReason.APR_CLIFF_GUARD_PREV_ZERO)
    drop = previous_incentive - current.incentive_apr_bps
    drop_bps = round_bps((drop / previous_incentive) * BPS)
    if drop_bps > min_drop_bps:
        return GuardResult(
            triggered=True,
            reason=GuardReason.APR_CLIFF_GUARD_TRIGGERED,
            details=f"pool={current.pool_id}, incentiveDrop={drop_bps}bps",
        )
    return GuardResult(triggered=False, reason=GuardReason.APR_CLIFF_GUARD_OK)


class SnapshotHistory:
    """Keeps exactly one prior snapshot per pool id (replace on write)."""

    def __init__(self) -> None:
        self._slots: Dict[str, PoolSnapshot] = {}
        self._lock = threading.Lock()

    def previous(self, pool_id: str) -> Optional[PoolSnapshot]:
        with self._lock:
            return self._slots.get(pool_id)

    def record(self, snapshots: Iterable[PoolSnapshot]) -> None:
        with self._lock:
            for snapshot in snapshots:
                self._slots[snapshot.pool_id] = snapshot

    def discard(self, pool_ids: Iterable[str]) -> None:
        with self._lock:
            for pool_id in pool_ids:
                self._slots.pop(pool_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)


__all__ = [
    "SnapshotHistory",
    "apr_cliff_guard",
    "depeg_guard",
    "deviation_bps_from_dollar",
    "slippage_guard",
]
