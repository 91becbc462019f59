"""Per-tick rotation decision engine.

Each tick gathers pool snapshots and stable prices concurrently, evaluates
the guards, compares net APY across eligible pools and emits exactly one
HOLD, ENTER, EXIT or ROTATE decision. Position, cooldown and daily rotation
counters live here and are only mutated under the tick lock.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from ..analysis.yield_math import incentive_apr_bps, net_apy_bps, payback_hours
from ..config.settings import AdapterId, AppConfig, PoolConfig
from ..errors import AdapterError, SentryieldError
from ..execution.gate import ExecutionGate
from ..execution.venues.base import StrategyAdapter
from ..execution.venues.registry import AdapterRegistry
from ..ingestion.pricing import PriceSource
from ..monitoring.logger import correlation_scope, get_logger
from ..monitoring.metrics import METRICS
from ..schemas import (
    DecisionAction,
    EnterIntent,
    ExitIntent,
    PoolSnapshot,
    Position,
    StrategyDecision,
)
from ..utils.constants import BPS, utc_now
from .controls import ControlAction, ControlRequest, ControlState
from .guards import SnapshotHistory, apr_cliff_guard, depeg_guard, slippage_guard


@dataclass(slots=True)
class TickInputs:
    """Joined results of the concurrent reads for one tick."""

    snapshots: Dict[str, PoolSnapshot] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    stable_prices: Dict[str, float] = field(default_factory=dict)


class RotationEngine:
    """Decides whether to hold, enter, exit or rotate on every scan tick."""

    def __init__(
        self,
        config: AppConfig,
        prices: PriceSource,
        adapters: Mapping[AdapterId, StrategyAdapter],
        *,
        gate: Optional[ExecutionGate] = None,
        controls: Optional[ControlState] = None,
        history: Optional[SnapshotHistory] = None,
        clock: Callable[[], datetime] = utc_now,
        join_timeout: Optional[float] = None,
    ) -> None:
        self._config = config
        self._runtime = config.runtime
        self._policy = config.policy
        self._prices = prices
        self._adapters = adapters if isinstance(adapters, AdapterRegistry) else AdapterRegistry(adapters)
        self._gate = gate or ExecutionGate(config.runtime)
        self.controls = controls or ControlState()
        self._history = history or SnapshotHistory()
        self._clock = clock
        self._pools = config.pool_by_id()
        self._logger = get_logger(__name__)
        self._tick_lock = threading.Lock()
        # Per-call budget for joining concurrent reads; a slower venue is excluded.
        self._join_timeout = (
            join_timeout
            if join_timeout is not None
            else 2 * max(config.rpc.request_timeout, config.price_oracle.timeout_seconds)
        )

        self._position: Optional[Position] = None
        self._last_move_at: Optional[datetime] = None
        self._rotation_day: Optional[date] = None
        self._rotations_today = 0
        self._ticks = 0
        self._last_error: Optional[str] = None
        self._last_snapshots: List[PoolSnapshot] = []
        self._decisions: Deque[StrategyDecision] = deque(maxlen=self._runtime.decision_history_size)

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def rotations_today(self) -> int:
        return self._rotations_today

    @property
    def decisions(self) -> List[StrategyDecision]:
        return list(self._decisions)

    def restore_position(self, position: Optional[Position], last_move_at: Optional[datetime] = None) -> None:
        """Seed state after a restart, e.g. from the vault's on-chain position."""

        with self._tick_lock:
            self._position = position
            self._last_move_at = last_move_at

    def run_tick(self) -> Optional[StrategyDecision]:
        """Run one tick; returns ``None`` if a previous tick is still running."""

        if not self._tick_lock.acquire(blocking=False):
            self._logger.warning("Previous tick still running; skipping")
            METRICS.increment("ticks.skipped")
            return None
        try:
            self._ticks += 1
            tick_id = f"tick-{self._ticks}-{uuid.uuid4().hex[:8]}"
            with correlation_scope(tick_id):
                started = time.perf_counter()
                try:
                    decision = self._tick(tick_id)
                except Exception as exc:
                    self._last_error = f"{type(exc).__name__}: {exc}"
                    METRICS.increment("ticks.failed")
                    raise
                self._last_error = None
                METRICS.observe("ticks.duration_seconds", time.perf_counter() - started)
                return decision
        finally:
            self._tick_lock.release()

    def _tick(self, tick_id: str) -> StrategyDecision:
        now = self._clock()
        self._roll_rotation_day(now)
        inputs = self.collect_inputs()

        decision = self.decide(tick_id, now, inputs)
        self._history.record(inputs.snapshots.values())
        self._history.discard(inputs.failures)
        self._last_snapshots = list(inputs.snapshots.values())

        if decision.is_move and not self._runtime.dry_run:
            self._attach_requests(decision, inputs, now)
        if self._gate.process(decision):
            self._apply(decision, now)

        self._decisions.append(decision)
        self._record_metrics(decision, inputs)
        self._logger.info(
            "Decision %s: %s",
            decision.action.value,
            decision.reason,
            extra={
                "from_pool": decision.from_pool_id,
                "to_pool": decision.to_pool_id,
                "execution": decision.execution.value,
            },
        )
        return decision

    # ------------------------------------------------------------------ inputs

    def collect_inputs(self) -> TickInputs:
        """Fetch stable prices and every enabled pool's snapshot in parallel."""

        inputs = TickInputs()
        pools = self._config.enabled_pools()
        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self._config.rpc.request_concurrency, len(pools) + 1)),
            thread_name_prefix="tick-io",
        )
        try:
            price_future = executor.submit(self._prices.get_stable_prices_usd)
            pool_futures: List[Tuple[PoolConfig, Future]] = [
                (pool, executor.submit(self._fetch_pool, pool)) for pool in pools
            ]
            deadline = time.monotonic() + self._join_timeout
            try:
                inputs.stable_prices = dict(price_future.result(timeout=self._remaining(deadline)))
            except (SentryieldError, TimeoutError) as exc:
                self._logger.warning("Stable price lookup failed: %s", exc)
            for pool, future in pool_futures:
                try:
                    inputs.snapshots[pool.id] = self._build_snapshot(
                        pool, future.result(timeout=self._remaining(deadline)), inputs.stable_prices
                    )
                except TimeoutError:
                    inputs.failures[pool.id] = "timed out"
                    self._logger.warning("Pool %s excluded this tick: timed out", pool.id)
                except SentryieldError as exc:
                    inputs.failures[pool.id] = str(exc)
                    self._logger.warning("Pool %s excluded this tick: %s", pool.id, exc)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return inputs

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(0.0, deadline - time.monotonic())

    def _fetch_pool(self, pool: PoolConfig) -> Tuple[Any, float, float]:
        adapter = self._adapter(pool)
        state = adapter.fetch_pool_state(pool)
        impact = adapter.estimate_price_impact_bps(pool, self._runtime.default_trade_amount_raw, state)
        reward_price = 0.0
        if pool.reward_rate_per_second > 0:
            reward_price = self._prices.get_price_usd(pool.reward_token_symbol)
        return state, impact, reward_price

    def _build_snapshot(
        self,
        pool: PoolConfig,
        fetched: Tuple[Any, float, float],
        stable_prices: Mapping[str, float],
    ) -> PoolSnapshot:
        state, impact, reward_price = fetched
        token_price = stable_prices.get(pool.token_in_symbol)
        if token_price is None:
            token_price = self._prices.get_price_usd(pool.token_in_symbol)
        tvl_usd = state.tvl_tokens * token_price
        incentive = incentive_apr_bps(pool.reward_rate_per_second, reward_price, tvl_usd)
        return PoolSnapshot(
            pool=pool,
            state=state,
            tvl_usd=tvl_usd,
            reward_price_usd=reward_price,
            incentive_apr_bps=incentive,
            net_apy_bps=net_apy_bps(pool.base_apy_bps, incentive, pool.protocol_fee_bps),
            slippage_bps=impact,
        )

    def _adapter(self, pool: PoolConfig) -> StrategyAdapter:
        return self._adapters.for_pool(pool)

    # ----------------------------------------------------------------- decide

    def decide(self, tick_id: str, now: datetime, inputs: TickInputs) -> StrategyDecision:
        held = self._position
        decision = StrategyDecision(
            tick_id=tick_id,
            action=DecisionAction.HOLD,
            reason="",
            created_at=now,
            from_pool_id=held.pool_id if held else None,
            net_apy_bps={pool_id: snap.net_apy_bps for pool_id, snap in inputs.snapshots.items()},
        )
        guards = decision.guards

        depeg = depeg_guard(inputs.stable_prices, self._policy.depeg_threshold_bps)
        guards.append(depeg)

        held_snapshot = inputs.snapshots.get(held.pool_id) if held else None
        if held_snapshot is not None:
            guards.append(slippage_guard(held_snapshot, self._policy.max_price_impact_bps))
            guards.append(
                apr_cliff_guard(
                    held_snapshot,
                    self._history.previous(held_snapshot.pool_id),
                    self._policy.apr_cliff_drop_bps,
                )
            )

        if depeg.triggered:
            if held and self._runtime.enter_only_mode:
                return self._exit(decision, f"Depeg guard triggered ({depeg.details}); enter-only mode exits")
            return self._hold(decision, f"Depeg guard triggered ({depeg.details})")

        if self.controls.paused:
            return self._hold(decision, "Paused by operator")

        if held and held_snapshot is None:
            control = self.controls.take_pending()
            if control and control.action is ControlAction.EXIT:
                return self._exit(decision, "Exit requested by operator")
            reason = inputs.failures.get(held.pool_id, "not fetched")
            return self._hold(decision, f"Held pool {held.pool_id} state unavailable: {reason}")

        tripped = [guard for guard in guards[1:] if guard.triggered]
        if tripped:
            return self._exit(
                decision, "; ".join(f"{guard.reason.value}: {guard.details}" for guard in tripped)
            )

        control = self.controls.take_pending()
        if control and control.action is ControlAction.EXIT:
            if held:
                return self._exit(decision, "Exit requested by operator")
            return self._hold(decision, "Exit requested while not positioned")

        candidates = self._eligible(inputs, exclude=held.pool_id if held else None)
        if control and control.action is ControlAction.ROTATE:
            return self._forced_move(decision, control, candidates, held_snapshot, now)
        if held_snapshot is not None:
            return self._consider_rotation(decision, held_snapshot, candidates, now)
        return self._consider_entry(decision, candidates, now)

    def _eligible(self, inputs: TickInputs, exclude: Optional[str]) -> List[PoolSnapshot]:
        eligible = [
            snapshot
            for pool_id, snapshot in inputs.snapshots.items()
            if pool_id != exclude and snapshot.slippage_bps <= self._policy.max_price_impact_bps
        ]
        eligible.sort(key=lambda snapshot: snapshot.net_apy_bps, reverse=True)
        return eligible

    def _consider_rotation(
        self,
        decision: StrategyDecision,
        held: PoolSnapshot,
        candidates: List[PoolSnapshot],
        now: datetime,
    ) -> StrategyDecision:
        if self._runtime.enter_only_mode:
            return self._hold(decision, "Enter-only mode: rotation disabled")
        if not candidates:
            return self._hold(decision, "No eligible rotation candidate")
        best = candidates[0]
        delta = best.net_apy_bps - held.net_apy_bps
        decision.delta_apy_bps = delta
        if delta < self._policy.rotation_delta_apy_bps:
            return self._hold(
                decision,
                f"Best candidate {best.pool_id} delta {delta:.0f}bps below "
                f"{self._policy.rotation_delta_apy_bps:.0f}bps",
            )
        try:
            cost = self._adapter(best.pool).estimate_rotation_cost_bps(
                held.pool, best.pool, self._runtime.default_trade_amount_raw, best.state
            )
        except AdapterError as exc:
            return self._hold(decision, f"Rotation cost unavailable for {best.pool_id}: {exc}")
        payback = payback_hours(cost, delta)
        decision.payback_hours = payback
        if payback > self._policy.max_payback_hours:
            return self._hold(
                decision,
                f"Payback {payback:.1f}h exceeds {self._policy.max_payback_hours:.0f}h for {best.pool_id}",
            )
        blocked = self._temporal_block(now, rotation=True)
        if blocked:
            return self._hold(decision, blocked)
        decision.action = DecisionAction.ROTATE
        decision.to_pool_id = best.pool_id
        decision.reason = (
            f"Rotate {held.pool_id} -> {best.pool_id}: delta {delta:.0f}bps, payback {payback:.1f}h"
        )
        return decision

    def _consider_entry(
        self,
        decision: StrategyDecision,
        candidates: List[PoolSnapshot],
        now: datetime,
    ) -> StrategyDecision:
        if not candidates:
            return self._hold(decision, "No eligible pool to enter")
        blocked = self._temporal_block(now, rotation=False)
        if blocked:
            return self._hold(decision, blocked)
        best = candidates[0]
        decision.action = DecisionAction.ENTER
        decision.to_pool_id = best.pool_id
        decision.reason = f"Enter {best.pool_id} at {best.net_apy_bps:.0f}bps net APY"
        return decision

    def _forced_move(
        self,
        decision: StrategyDecision,
        control: ControlRequest,
        candidates: List[PoolSnapshot],
        held: Optional[PoolSnapshot],
        now: datetime,
    ) -> StrategyDecision:
        target_id = control.pool_id
        if held is not None and held.pool_id == target_id:
            return self._hold(decision, f"Already positioned in {target_id}")
        target = next((snapshot for snapshot in candidates if snapshot.pool_id == target_id), None)
        if target is None:
            return self._hold(decision, f"Requested pool {target_id} is not eligible this tick")
        decision.to_pool_id = target.pool_id
        if held is None:
            decision.action = DecisionAction.ENTER
            decision.reason = f"Enter {target.pool_id} requested by operator"
        else:
            decision.action = DecisionAction.ROTATE
            decision.delta_apy_bps = target.net_apy_bps - held.net_apy_bps
            decision.reason = f"Rotate {held.pool_id} -> {target.pool_id} requested by operator"
        return decision

    def _temporal_block(self, now: datetime, *, rotation: bool) -> Optional[str]:
        if rotation and self._position is not None:
            held_for = (now - self._position.entered_at).total_seconds()
            if held_for < self._runtime.min_hold_seconds:
                return f"Minimum hold not reached ({held_for:.0f}s < {self._runtime.min_hold_seconds:.0f}s)"
            if self._rotations_today >= self._runtime.max_rotations_per_day:
                return (
                    f"Daily rotation cap reached ({self._rotations_today}/"
                    f"{self._runtime.max_rotations_per_day})"
                )
        if self._last_move_at is not None:
            since = (now - self._last_move_at).total_seconds()
            if since <= self._runtime.cooldown_seconds:
                return f"Cooldown active ({since:.0f}s <= {self._runtime.cooldown_seconds:.0f}s)"
        return None

    @staticmethod
    def _hold(decision: StrategyDecision, reason: str) -> StrategyDecision:
        decision.action = DecisionAction.HOLD
        decision.to_pool_id = None
        decision.reason = reason
        return decision

    @staticmethod
    def _exit(decision: StrategyDecision, reason: str) -> StrategyDecision:
        decision.action = DecisionAction.EXIT
        decision.to_pool_id = None
        decision.reason = reason
        return decision

    # -------------------------------------------------------------- execution

    def _attach_requests(self, decision: StrategyDecision, inputs: TickInputs, now: datetime) -> None:
        amount = self._runtime.default_trade_amount_raw
        min_out = int(amount * (BPS - self._policy.max_price_impact_bps) / BPS)
        deadline = int(now.timestamp()) + self._policy.tx_deadline_seconds
        try:
            if decision.action in (DecisionAction.EXIT, DecisionAction.ROTATE) and decision.from_pool_id:
                pool = self._pools[decision.from_pool_id]
                decision.exit_request = self._adapter(pool).build_exit_request(
                    ExitIntent(
                        pool=pool,
                        token_out=self._config.stable_token.address,
                        amount_in=amount,
                        min_out=min_out,
                        deadline=deadline,
                    )
                )
            if decision.action in (DecisionAction.ENTER, DecisionAction.ROTATE) and decision.to_pool_id:
                pool = self._pools[decision.to_pool_id]
                snapshot = inputs.snapshots.get(pool.id)
                decision.enter_request = self._adapter(pool).build_enter_request(
                    EnterIntent(
                        pool=pool,
                        amount_in=amount,
                        min_out=min_out,
                        deadline=deadline,
                        net_apy_bps=snapshot.net_apy_bps if snapshot else 0.0,
                        intended_hold_seconds=int(
                            max(self._runtime.min_hold_seconds, self._runtime.cooldown_seconds)
                        ),
                    )
                )
        except AdapterError as exc:
            self._logger.error("Request build failed for %s: %s", decision.action.value, exc)
            decision.exit_request = None
            decision.enter_request = None
            self._hold(decision, f"Request build failed: {exc}")

    def _apply(self, decision: StrategyDecision, now: datetime) -> None:
        if decision.action is DecisionAction.EXIT:
            self._position = None
        elif decision.action is DecisionAction.ENTER:
            self._position = Position(pool_id=decision.to_pool_id, entered_at=now)
            self._last_move_at = now
        elif decision.action is DecisionAction.ROTATE:
            self._position = Position(pool_id=decision.to_pool_id, entered_at=now)
            self._last_move_at = now
            self._rotations_today += 1

    def _roll_rotation_day(self, now: datetime) -> None:
        today = now.date()
        if self._rotation_day != today:
            self._rotation_day = today
            self._rotations_today = 0

    def _record_metrics(self, decision: StrategyDecision, inputs: TickInputs) -> None:
        METRICS.increment(f"decisions.{decision.action.value.lower()}")
        for guard in decision.guards:
            if guard.triggered:
                METRICS.increment(f"guards.{guard.reason.value.lower()}")
        METRICS.gauge("pools.eligible", len(inputs.snapshots))
        METRICS.gauge("pools.failed", len(inputs.failures))
        telemetry = self._price_telemetry()
        if telemetry:
            METRICS.gauges(telemetry, prefix="price_oracle.")

    def _price_telemetry(self) -> Dict[str, int]:
        reader = getattr(self._prices, "telemetry", None)
        return reader().as_dict() if callable(reader) else {}

    # ------------------------------------------------------------------ state

    def status_payload(self) -> Dict[str, Any]:
        """Body served on the bot's ``/state`` endpoint."""

        healthy = self._last_error is None
        ready = healthy and bool(self._decisions)
        if not healthy:
            reason: Optional[str] = self._last_error
        elif not ready:
            reason = "No tick completed yet"
        else:
            reason = None
        position = self._position
        return {
            "healthy": healthy,
            "ready": ready,
            "reason": reason,
            "state": {
                "snapshots": [snapshot.to_dict() for snapshot in self._last_snapshots],
                "decisions": [decision.to_dict() for decision in self._decisions],
                "tweets": [],
            },
            "runtime": {
                "dryRun": self._runtime.dry_run,
                "liveModeArmed": self._runtime.live_mode_armed,
                "enterOnlyMode": self._runtime.enter_only_mode,
                "scanIntervalSeconds": self._runtime.scan_interval_seconds,
                "position": None
                if position is None
                else {"poolId": position.pool_id, "enteredAt": position.entered_at.isoformat()},
                "lastMoveAt": self._last_move_at.isoformat() if self._last_move_at else None,
                "rotationsToday": self._rotations_today,
                "controls": self.controls.snapshot(),
                "priceOracle": self._price_telemetry(),
            },
        }


__all__ = ["RotationEngine", "TickInputs"]
