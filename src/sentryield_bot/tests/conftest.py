"""Shared fakes for HTTP transports and clocks."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest
import requests


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, *, body_error: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._body_error = body_error

    def json(self) -> Any:
        if self._body_error:
            raise ValueError("not json")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """Records every request and replies from a handler or a queue of responses."""

    def __init__(self, handler: Optional[Callable[..., Any]] = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.handler = handler

    def _dispatch(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        if self.handler is None:
            raise AssertionError(f"Unexpected {method} {url}")
        outcome = self.handler(method, url, **kwargs)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._dispatch("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._dispatch("POST", url, **kwargs)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    # Keep developer .env / config/app.toml out of the tests.
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("APP_CONFIG_FILE", raising=False)
    monkeypatch.delenv("BOT_MODE", raising=False)
    from sentryield_bot.config import settings

    settings.get_app_config.cache_clear()
    yield
    settings.get_app_config.cache_clear()


def make_pool(pool_id: str = "curvance-usdc-market", **overrides: Any):
    from sentryield_bot.config.settings import AdapterId, PoolConfig

    values: Dict[str, Any] = {
        "id": pool_id,
        "protocol": "Curvance",
        "enabled": True,
        "adapter_id": AdapterId.CURVANCE,
        "pool": "0x21aDBb60a5fB909e7F1fB48aACC4569615CD97b5",
        "target": "0x00000000000000000000000000000000000000aa",
        "rotation_cost_bps": 12,
    }
    values.update(overrides)
    return PoolConfig(**values)


def make_snapshot(
    pool=None,
    *,
    incentive_apr_bps: float = 0.0,
    net_apy_bps: float = 400.0,
    slippage_bps: float = 0.0,
    tvl_raw: int = 10_000_000_000,
):
    from sentryield_bot.schemas import PoolOnChainState, PoolSnapshot
    from sentryield_bot.utils.constants import utc_now

    pool = pool or make_pool()
    state = PoolOnChainState(
        pool_id=pool.id,
        tvl_raw=tvl_raw,
        token_decimals=pool.token_decimals,
        available_liquidity_raw=tvl_raw,
        fetched_at=utc_now(),
    )
    return PoolSnapshot(
        pool=pool,
        state=state,
        tvl_usd=state.tvl_tokens,
        reward_price_usd=1.0,
        incentive_apr_bps=incentive_apr_bps,
        net_apy_bps=net_apy_bps,
        slippage_bps=slippage_bps,
    )
