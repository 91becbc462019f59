from __future__ import annotations

import json
import logging

from conftest import FakeClock
from sentryield_bot.monitoring.logger import StructuredFormatter, ThrottledWarning, correlation_scope
from sentryield_bot.monitoring.metrics import METRICS


def test_throttled_warning_deduplicates_per_key(clock: FakeClock, caplog) -> None:
    logger = logging.getLogger("sentryield.test.throttle")
    throttle = ThrottledWarning(logger, 60, timer=clock)

    with caplog.at_level(logging.WARNING, logger="sentryield.test.throttle"):
        assert throttle.warn("a", "first %s", 1) is True
        assert throttle.warn("a", "again") is False
        assert throttle.warn("b", "other key") is True
        clock.advance(61)
        assert throttle.warn("a", "after cooldown") is True

    assert [record.getMessage() for record in caplog.records] == ["first 1", "other key", "after cooldown"]


def test_zero_cooldown_disables_deduplication(caplog) -> None:
    throttle = ThrottledWarning(logging.getLogger("sentryield.test.nothrottle"), 0)
    with caplog.at_level(logging.WARNING):
        throttle.warn("k", "x")
        throttle.warn("k", "x")
    assert len(caplog.records) == 2


def test_structured_formatter_includes_correlation_and_extras() -> None:
    record = logging.LogRecord("sentryield", logging.INFO, __file__, 1, "Decision %s", ("HOLD",), None)
    record.correlation_id = "tick-1"
    record.from_pool = "curvance-usdc-market"

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "Decision HOLD"
    assert payload["correlation_id"] == "tick-1"
    assert payload["extra"] == {"from_pool": "curvance-usdc-market"}


def test_correlation_scope_resets() -> None:
    from sentryield_bot.monitoring.logger import _CORRELATION_ID

    with correlation_scope("tick-7"):
        assert _CORRELATION_ID.get() == "tick-7"
    assert _CORRELATION_ID.get() == "-"


def test_prometheus_export_sanitizes_metric_names() -> None:
    METRICS.reset()
    METRICS.increment("decisions.hold")
    METRICS.gauges({"cache_fresh_hits": 3}, prefix="price_oracle.")
    METRICS.observe("ticks.duration_seconds", 0.5)
    output = METRICS.export_prometheus()
    lines = [line for line in output.splitlines() if line]
    assert any(line.startswith("# TYPE decisions_hold counter") for line in lines)
    assert "decisions.hold" not in output
    assert any("price_oracle_cache_fresh_hits 3.0" in line for line in lines)
    assert any("ticks_duration_seconds" in line for line in lines)
    METRICS.reset()
