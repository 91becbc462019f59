"""The single boundary between computed decisions and the vault executor."""

from __future__ import annotations

from typing import Optional, Protocol

from ..config.settings import RuntimeConfig
from ..errors import ExecutionError, RpcError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..schemas import ExecutionStatus, StrategyDecision


class VaultExecutor(Protocol):
    """Signs and broadcasts vault calls. Returns a transaction reference."""

    def submit(self, decision: StrategyDecision) -> str:
        ...


class ExecutionGate:
    """Forwards requests only when ``dry_run`` is off *and* live mode is armed.

    ``process`` returns ``True`` when the caller should apply the decision to
    its position state: always for dry-run moves, and for live moves only once
    the executor has accepted them.
    """

    def __init__(self, runtime: RuntimeConfig, executor: Optional[VaultExecutor] = None) -> None:
        self._runtime = runtime
        self._executor = executor
        self._logger = get_logger(__name__)

    @property
    def live(self) -> bool:
        return not self._runtime.dry_run and self._runtime.live_mode_armed

    def process(self, decision: StrategyDecision) -> bool:
        if not decision.is_move:
            decision.execution = ExecutionStatus.NOT_REQUIRED
            return False
        if self._runtime.dry_run:
            decision.execution = ExecutionStatus.DRY_RUN
            decision.execution_detail = "dry run; no transaction sent"
            METRICS.increment("execution.dry_run")
            return True
        if not self._runtime.live_mode_armed:
            return self._withhold(decision, "live mode not armed")
        if self._executor is None:
            return self._withhold(decision, "no vault executor configured")
        try:
            reference = self._executor.submit(decision)
        except (ExecutionError, RpcError) as exc:
            decision.execution = ExecutionStatus.FAILED
            decision.execution_detail = str(exc)
            METRICS.increment("execution.failed")
            self._logger.error("Execution of %s failed: %s", decision.action.value, exc)
            return False
        decision.execution = ExecutionStatus.SUBMITTED
        decision.execution_detail = f"{self._runtime.explorer_tx_base_url}{reference}"
        METRICS.increment("execution.submitted")
        self._logger.info("Submitted %s: %s", decision.action.value, decision.execution_detail)
        return True

    def _withhold(self, decision: StrategyDecision, detail: str) -> bool:
        decision.execution = ExecutionStatus.WITHHELD
        decision.execution_detail = detail
        METRICS.increment("execution.withheld")
        self._logger.warning("Withholding %s request: %s", decision.action.value, detail)
        return False


__all__ = ["ExecutionGate", "VaultExecutor"]
