"""Decision engine behaviour with stubbed venues and prices."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from conftest import FakeResponse, FakeSession, make_pool, make_snapshot
from sentryield_bot.config.settings import AdapterId, RPCConfig, RuntimeConfig, load_app_config
from sentryield_bot.errors import ExecutionError, RpcError
from sentryield_bot.execution.gate import ExecutionGate
from sentryield_bot.execution.venues import CurvanceAdapter, DisabledAdapter, MorphoVaultAdapter
from sentryield_bot.ingestion.evm_rpc import EvmRpcClient, encode_uint256
from sentryield_bot.monitoring.metrics import METRICS
from sentryield_bot.schemas import DecisionAction, ExecutionStatus, GuardReason, PoolOnChainState, Position
from sentryield_bot.strategy import RotationEngine, SnapshotHistory, TickInputs
from sentryield_bot.utils.constants import CURVANCE_USDC_MARKET_7C9D, CURVANCE_USDC_MARKET_8EE9

HELD = "curvance-usdc-market"
BETTER = "curvance-usdc-market-8ee9"


class DateClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StubPrices:
    def __init__(self, stable: Optional[Dict[str, float]] = None) -> None:
        self.stable = {"USDC": 1.0} if stable is None else stable

    def get_price_usd(self, symbol: str) -> float:
        return 1.0

    def get_stable_prices_usd(self) -> Dict[str, float]:
        return dict(self.stable)


class StubAdapter(CurvanceAdapter):
    def __init__(self) -> None:
        super().__init__(rpc=None)  # type: ignore[arg-type]
        self.impacts: Dict[str, float] = {}
        self.failing: Dict[str, Exception] = {}
        self.blocked: Dict[str, threading.Event] = {}

    def fetch_pool_state(self, pool):
        if pool.id in self.blocked:
            self.blocked[pool.id].wait(5)
        if pool.id in self.failing:
            raise self.failing[pool.id]
        return PoolOnChainState(
            pool_id=pool.id,
            tvl_raw=10_000_000_000,
            token_decimals=pool.token_decimals,
            available_liquidity_raw=10_000_000_000,
            fetched_at=datetime(2026, 3, 2, tzinfo=timezone.utc),
        )

    def estimate_price_impact_bps(self, pool, amount_in, state=None) -> float:
        return self.impacts.get(pool.id, 0.0)


class StubExecutor:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.submitted = []

    def submit(self, decision) -> str:
        if self.error:
            raise self.error
        self.submitted.append(decision)
        return "0xfeed"


def _pools(held_cost: float = 12.0, *, with_third: bool = False):
    pools = [
        make_pool(HELD, base_apy_bps=420, protocol_fee_bps=20, rotation_cost_bps=held_cost),
        make_pool(
            BETTER,
            pool=CURVANCE_USDC_MARKET_8EE9,
            base_apy_bps=720,
            protocol_fee_bps=20,
            rotation_cost_bps=12,
        ),
    ]
    if with_third:
        pools.append(
            make_pool(
                "curvance-usdc-market-7c9d",
                pool=CURVANCE_USDC_MARKET_7C9D,
                base_apy_bps=1020,
                protocol_fee_bps=20,
                rotation_cost_bps=1,
            )
        )
    return pools


def _config(*, pools=None, **runtime):
    values = {"cooldown_seconds": 0, "min_hold_seconds": 0}
    values.update(runtime)
    if values.get("dry_run") is False:
        values.setdefault("executor_private_key", "0x" + "11" * 32)
        values.setdefault("vault_address", "0x00000000000000000000000000000000000000bb")
    return load_app_config(runtime=RuntimeConfig(**values), pools=pools or _pools())


def _engine(
    config,
    *,
    prices=None,
    adapter=None,
    executor=None,
    history=None,
    clock=None,
    extra_adapters=None,
    join_timeout=None,
):
    adapter = adapter or StubAdapter()
    adapters = {tag: DisabledAdapter(tag) for tag in AdapterId}
    adapters[AdapterId.CURVANCE] = adapter
    adapters.update(extra_adapters or {})
    return RotationEngine(
        config,
        prices or StubPrices(),
        adapters,
        gate=ExecutionGate(config.runtime, executor),
        history=history,
        clock=clock or DateClock(),
        join_timeout=join_timeout,
    )


def test_enters_best_pool_when_flat_in_dry_run() -> None:
    engine = _engine(_config())

    decision = engine.run_tick()

    assert decision.action is DecisionAction.ENTER
    assert decision.to_pool_id == BETTER
    assert decision.execution is ExecutionStatus.DRY_RUN
    assert decision.enter_request is None
    assert engine.position.pool_id == BETTER
    assert decision.net_apy_bps == {HELD: 400, BETTER: 700}
    assert [guard.reason for guard in decision.guards] == [GuardReason.DEPEG_GUARD_OK]


def test_rotation_rejected_when_payback_exceeds_cap() -> None:
    engine = _engine(_config())
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.HOLD
    assert decision.delta_apy_bps == 300
    assert decision.payback_hours == pytest.approx(350.4)
    assert "Payback" in decision.reason
    assert engine.position.pool_id == HELD


def test_rotation_proposed_when_all_conditions_pass() -> None:
    engine = _engine(_config(pools=_pools(held_cost=1)))
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.ROTATE
    assert (decision.from_pool_id, decision.to_pool_id) == (HELD, BETTER)
    assert decision.payback_hours == pytest.approx(29.2)
    assert engine.position.pool_id == BETTER
    assert engine.rotations_today == 1


def test_rotation_blocked_by_daily_cap_then_reset_next_day() -> None:
    clock = DateClock()
    engine = _engine(_config(pools=_pools(held_cost=1, with_third=True)), clock=clock)
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    first = engine.run_tick()
    assert first.action is DecisionAction.ROTATE
    assert first.to_pool_id == "curvance-usdc-market-7c9d"

    engine.restore_position(Position(HELD, clock.now), last_move_at=clock.now)
    clock.advance(60)
    second = engine.run_tick()
    assert second.action is DecisionAction.HOLD
    assert "Daily rotation cap" in second.reason

    clock.advance(24 * 3600)
    third = engine.run_tick()
    assert third.action is DecisionAction.ROTATE


def test_cooldown_and_min_hold_block_rotation() -> None:
    clock = DateClock()
    engine = _engine(
        _config(pools=_pools(held_cost=1), cooldown_seconds=3600, min_hold_seconds=600), clock=clock
    )
    engine.restore_position(Position(HELD, clock.now), last_move_at=clock.now)

    clock.advance(300)
    assert "Minimum hold" in engine.run_tick().reason
    clock.advance(600)
    assert "Cooldown" in engine.run_tick().reason
    clock.advance(3600)
    assert engine.run_tick().action is DecisionAction.ROTATE


def test_depeg_forces_hold_even_when_flat() -> None:
    engine = _engine(_config(), prices=StubPrices({"USDC": 1.02}))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.HOLD
    assert decision.guards[0].triggered is True
    assert engine.position is None


def test_missing_stable_prices_count_as_depeg() -> None:
    engine = _engine(_config(), prices=StubPrices({}))
    assert engine.run_tick().action is DecisionAction.HOLD


def test_depeg_in_enter_only_mode_exits() -> None:
    engine = _engine(_config(enter_only_mode=True), prices=StubPrices({"USDC": 0.97}))
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.EXIT
    assert engine.position is None


def test_enter_only_mode_never_rotates() -> None:
    engine = _engine(_config(pools=_pools(held_cost=1), enter_only_mode=True))
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    assert engine.run_tick().action is DecisionAction.HOLD


def test_slippage_on_held_pool_forces_exit() -> None:
    adapter = StubAdapter()
    adapter.impacts[HELD] = 45.0
    engine = _engine(_config(), adapter=adapter)
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.EXIT
    assert GuardReason.SLIPPAGE_GUARD_TRIGGERED.value in decision.reason


def test_apr_cliff_on_held_pool_forces_exit() -> None:
    pool = make_pool(HELD, reward_rate_per_second=0.01)
    history = SnapshotHistory()
    history.record([make_snapshot(pool, incentive_apr_bps=1000)])
    config = _config(pools=[pool])
    engine = _engine(config, history=history)
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))
    inputs = TickInputs(
        snapshots={HELD: make_snapshot(pool, incentive_apr_bps=400, net_apy_bps=380)},
        stable_prices={"USDC": 1.0},
    )

    decision = engine.decide("tick-test", datetime(2026, 3, 2, tzinfo=timezone.utc), inputs)

    assert decision.action is DecisionAction.EXIT
    assert [guard.reason for guard in decision.guards] == [
        GuardReason.DEPEG_GUARD_OK,
        GuardReason.SLIPPAGE_GUARD_OK,
        GuardReason.APR_CLIFF_GUARD_TRIGGERED,
    ]


def test_failing_pool_is_excluded_for_the_tick() -> None:
    adapter = StubAdapter()
    adapter.failing[BETTER] = RpcError("timeout")
    engine = _engine(_config(), adapter=adapter)

    decision = engine.run_tick()

    assert decision.action is DecisionAction.ENTER
    assert decision.to_pool_id == HELD
    assert BETTER not in decision.net_apy_bps


def test_slow_venue_is_cut_off_at_the_join_deadline() -> None:
    adapter = StubAdapter()
    engine = _engine(_config(), adapter=adapter, join_timeout=0.2)

    adapter.blocked[BETTER] = threading.Event()
    started = time.monotonic()
    try:
        inputs = engine.collect_inputs()
    finally:
        adapter.blocked.pop(BETTER).set()

    assert time.monotonic() - started < 2
    assert inputs.failures == {BETTER: "timed out"}
    assert set(inputs.snapshots) == {HELD}

    adapter.blocked[BETTER] = threading.Event()
    try:
        decision = engine.run_tick()
    finally:
        adapter.blocked.pop(BETTER).set()

    assert decision.action is DecisionAction.ENTER
    assert decision.to_pool_id == HELD


def test_unencodable_venue_address_excludes_only_that_pool() -> None:
    def handler(method, url, **kwargs):
        body = kwargs["json"]
        result = "0x" + encode_uint256(10**12)
        return FakeResponse(200, {"jsonrpc": "2.0", "id": body["id"], "result": result})

    rpc = EvmRpcClient(RPCConfig(url="https://rpc.example"), session=FakeSession(handler))
    morpho = make_pool(
        "morpho-usdc-vault",
        protocol="Morpho",
        adapter_id=AdapterId.MORPHO,
        pool=CURVANCE_USDC_MARKET_7C9D,
        base_apy_bps=5000,
    ).model_copy(update={"target": "0xdeadbeef"})
    engine = _engine(
        _config(pools=_pools() + [morpho]),
        extra_adapters={AdapterId.MORPHO: MorphoVaultAdapter(rpc)},
    )

    inputs = engine.collect_inputs()
    decision = engine.run_tick()

    assert "Cannot encode maxWithdraw" in inputs.failures["morpho-usdc-vault"]
    assert decision.action is DecisionAction.ENTER
    assert decision.to_pool_id == BETTER


def test_disabled_adapter_excludes_pool() -> None:
    pools = _pools() + [make_pool("gearbox-usdc-vault", adapter_id=AdapterId.GEARBOX, base_apy_bps=5000)]
    engine = _engine(_config(pools=pools))

    decision = engine.run_tick()

    assert decision.to_pool_id == BETTER
    assert engine.status_payload()["runtime"]["position"]["poolId"] == BETTER


def test_unavailable_held_pool_holds() -> None:
    adapter = StubAdapter()
    adapter.failing[HELD] = RpcError("node down")
    engine = _engine(_config(pools=_pools(held_cost=1)), adapter=adapter)
    engine.restore_position(Position(HELD, datetime(2026, 3, 1, tzinfo=timezone.utc)))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.HOLD
    assert "state unavailable" in decision.reason


def test_live_unarmed_builds_but_withholds() -> None:
    engine = _engine(_config(dry_run=False, live_mode_armed=False))

    decision = engine.run_tick()

    assert decision.action is DecisionAction.ENTER
    assert decision.execution is ExecutionStatus.WITHHELD
    assert decision.enter_request is not None
    assert decision.enter_request.min_out == 997_000
    assert engine.position is None


def test_live_armed_applies_only_after_submission() -> None:
    executor = StubExecutor()
    engine = _engine(_config(dry_run=False, live_mode_armed=True), executor=executor)

    decision = engine.run_tick()

    assert decision.execution is ExecutionStatus.SUBMITTED
    assert decision.execution_detail.endswith("0xfeed")
    assert executor.submitted == [decision]
    assert engine.position.pool_id == BETTER


def test_live_armed_failure_leaves_state_untouched() -> None:
    executor = StubExecutor(ExecutionError("nonce too low"))
    engine = _engine(_config(dry_run=False, live_mode_armed=True), executor=executor)

    decision = engine.run_tick()

    assert decision.execution is ExecutionStatus.FAILED
    assert engine.position is None


def test_operator_controls() -> None:
    engine = _engine(_config())
    engine.controls.pause()
    assert engine.run_tick().reason == "Paused by operator"

    engine.controls.resume()
    engine.controls.rotate(HELD)
    forced = engine.run_tick()
    assert forced.action is DecisionAction.ENTER
    assert forced.to_pool_id == HELD

    engine.controls.exit()
    assert engine.run_tick().action is DecisionAction.EXIT
    assert engine.position is None
    assert engine.controls.take_pending() is None


def test_ticks_never_overlap() -> None:
    engine = _engine(_config())
    METRICS.reset()
    with engine._tick_lock:
        assert engine.run_tick() is None
    assert METRICS.get("ticks.skipped") == 1


def test_status_payload_shape() -> None:
    engine = _engine(_config())
    before = engine.status_payload()
    assert before["ready"] is False
    assert before["reason"] == "No tick completed yet"

    engine.run_tick()
    payload = engine.status_payload()

    assert payload["healthy"] is True
    assert payload["ready"] is True
    assert set(payload["state"]) == {"snapshots", "decisions", "tweets"}
    assert len(payload["state"]["snapshots"]) == 2
    assert payload["state"]["tweets"] == []
    assert payload["state"]["decisions"][0]["action"] == "ENTER"
    assert payload["runtime"]["dryRun"] is True
