"""Structured logging helpers with correlation ID support."""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

from ..config.settings import MonitoringConfig

_LOGGER_CACHE: Dict[str, logging.Logger] = {}
_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default="-")
_LOGGING_CONFIGURED = False

_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())


class _CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple accessor
        record.correlation_id = _CORRELATION_ID.get("-")
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter that emits structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting logic
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_") and key != "correlation_id"
        }
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(config: Optional[MonitoringConfig] = None) -> None:
    global _LOGGING_CONFIGURED
    # Lazy default setup from get_logger must not block an explicit configuration later.
    if _LOGGING_CONFIGURED and config is None:
        return
    cfg = config or MonitoringConfig()
    handler = logging.StreamHandler(sys.stdout)
    if cfg.json_logs:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s")
        )
    handler.addFilter(_CorrelationFilter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))
    logging.captureWarnings(True)
    _LOGGING_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    if not _LOGGING_CONFIGURED:
        configure_logging()
    if name not in _LOGGER_CACHE:
        _LOGGER_CACHE[name] = logging.getLogger(name)
    return _LOGGER_CACHE[name]


@contextmanager
def correlation_scope(correlation_id: Optional[str]):
    token = _CORRELATION_ID.set(correlation_id or "-")
    try:
        yield
    finally:
        _CORRELATION_ID.reset(token)


class ThrottledWarning:
    """Emit a warning at most once per key within ``cooldown_seconds``.

    A cooldown of zero disables de-duplication.
    """

    def __init__(
        self,
        logger: logging.Logger,
        cooldown_seconds: float,
        *,
        timer: Optional[Callable[[], float]] = None,
        maxsize: int = 256,
    ) -> None:
        self._logger = logger
        self._cooldown = max(float(cooldown_seconds), 0.0)
        self._lock = threading.Lock()
        self._recent: Optional[TTLCache] = None
        if self._cooldown > 0:
            kwargs: Dict[str, Any] = {"maxsize": maxsize, "ttl": self._cooldown}
            if timer is not None:
                kwargs["timer"] = timer
            self._recent = TTLCache(**kwargs)

    def warn(self, key: str, message: str, *args: Any) -> bool:
        if self._recent is None:
            self._logger.warning(message, *args)
            return True
        with self._lock:
            if key in self._recent:
                return False
            self._recent[key] = True
        self._logger.warning(message, *args, extra={"warning_key": key})
        return True


__all__ = [
    "StructuredFormatter",
    "ThrottledWarning",
    "configure_logging",
    "correlation_scope",
    "get_logger",
]
