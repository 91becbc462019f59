"""Operator controls (pause, resume, exit, rotate) applied between ticks."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..monitoring.logger import get_logger
from ..utils.constants import utc_now


class ControlAction(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    EXIT = "exit"
    ROTATE = "rotate"


@dataclass(slots=True, frozen=True)
class ControlRequest:
    action: ControlAction
    pool_id: Optional[str] = None
    requested_at: Optional[datetime] = None


class ControlState:
    """Thread-safe holder for the paused flag and one pending one-shot command.

    ``exit`` and ``rotate`` are consumed by the next tick; a newer command
    replaces an unconsumed one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paused = False
        self._pending: Optional[ControlRequest] = None
        self._logger = get_logger(__name__)

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    def apply(self, action: ControlAction | str, pool_id: Optional[str] = None) -> ControlRequest:
        raw = action.value if isinstance(action, ControlAction) else str(action).strip().lower()
        try:
            verb = ControlAction(raw)
        except ValueError as exc:
            valid = sorted(item.value for item in ControlAction)
            raise ValueError(f"Unsupported control '{action}'. Valid options: {valid}") from exc
        if verb is ControlAction.ROTATE and not (pool_id or "").strip():
            raise ValueError("rotate requires a pool id")
        request = ControlRequest(
            action=verb,
            pool_id=pool_id.strip() if pool_id else None,
            requested_at=utc_now(),
        )
        with self._lock:
            if verb is ControlAction.PAUSE:
                self._paused = True
            elif verb is ControlAction.RESUME:
                self._paused = False
            else:
                self._pending = request
        self._logger.info("Control %s accepted%s", verb.value, f" ({request.pool_id})" if request.pool_id else "")
        return request

    def pause(self) -> ControlRequest:
        return self.apply(ControlAction.PAUSE)

    def resume(self) -> ControlRequest:
        return self.apply(ControlAction.RESUME)

    def exit(self) -> ControlRequest:
        return self.apply(ControlAction.EXIT)

    def rotate(self, pool_id: str) -> ControlRequest:
        return self.apply(ControlAction.ROTATE, pool_id)

    def take_pending(self) -> Optional[ControlRequest]:
        with self._lock:
            request, self._pending = self._pending, None
        return request

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            pending = self._pending
            return {
                "paused": self._paused,
                "pending": None
                if pending is None
                else {"action": pending.action.value, "poolId": pending.pool_id},
            }


__all__ = ["ControlAction", "ControlRequest", "ControlState"]
