"""Entrypoint for the stablecoin yield rotation bot."""

from __future__ import annotations

import argparse
import asyncio
import time
from contextlib import contextmanager
from typing import Optional, Sequence

from .config.settings import AppConfig, get_app_config
from .errors import ConfigurationError
from .execution.gate import ExecutionGate, VaultExecutor
from .execution.venues import build_adapter_registry
from .ingestion.evm_rpc import EvmRpcClient
from .ingestion.pricing import PriceOracle
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS
from .schemas import StrategyDecision
from .strategy import RotationEngine

logger = get_logger(__name__)


@contextmanager
def performance_monitor(operation_name: str):
    """Context manager for performance monitoring."""
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        METRICS.observe(f"bot.{operation_name}.duration_seconds", duration)
        METRICS.increment(f"bot.{operation_name}.calls_total", 1.0)


def _log_runtime_mode(config: AppConfig, executor: Optional[VaultExecutor]) -> None:
    runtime = config.runtime
    if runtime.dry_run:
        if runtime.live_mode_armed:
            logger.info("live_mode_armed is set but dry_run=true; arming has no effect")
        logger.info("Running in dry-run mode; no transactions will be sent")
        return
    if not runtime.live_mode_armed:
        logger.warning("Live mode is not armed; built requests will be withheld")
    elif executor is None:
        logger.warning("Live mode is armed but no vault executor is configured; requests will be withheld")
    else:
        logger.info("Live mode armed; vault %s", runtime.vault_address)


def build_engine(config: AppConfig, executor: Optional[VaultExecutor] = None) -> RotationEngine:
    rpc = EvmRpcClient(config.rpc)
    adapters = build_adapter_registry(rpc)
    oracle = PriceOracle(config.price_oracle)
    gate = ExecutionGate(config.runtime, executor)
    _log_runtime_mode(config, executor)
    return RotationEngine(config, oracle, adapters, gate=gate)


async def run_async(engine: RotationEngine) -> Optional[StrategyDecision]:
    with performance_monitor("tick"):
        decision = await asyncio.to_thread(engine.run_tick)
    if decision is not None:
        METRICS.gauge("bot.position_open", 1.0 if engine.position else 0.0)
    return decision


async def run_loop(
    engine: RotationEngine,
    interval_seconds: float,
    max_cycles: Optional[int] = None,
) -> None:
    cycle = 0
    while True:
        cycle += 1
        try:
            await run_async(engine)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Loop iteration %d failed: %s", cycle, exc, extra={"cycle": cycle})
        if max_cycles is not None and cycle >= max_cycles:
            break
        await asyncio.sleep(max(interval_seconds, 0.0))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the stablecoin yield rotation bot")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between ticks (default: runtime.scan_interval_seconds)",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Optional limit to the number of loop iterations to execute.",
    )
    args = parser.parse_args(argv)

    try:
        config = get_app_config()
    except ConfigurationError as exc:
        logger.error("Refusing to start: %s", exc)
        return 2
    bootstrap_observability(config)
    engine = build_engine(config)
    if args.once:
        asyncio.run(run_async(engine))
        return 0
    interval = args.interval if args.interval is not None else config.runtime.scan_interval_seconds
    asyncio.run(run_loop(engine, interval, args.max_cycles))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
