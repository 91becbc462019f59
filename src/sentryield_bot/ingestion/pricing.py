"""Cached, fault-tolerant USD pricing for reward and stable tokens."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, List, Optional, Protocol

import requests

from ..config.settings import PriceOracleConfig, get_app_config
from ..errors import InvalidPriceError, PriceFeedError, RateLimitCooldownError
from ..monitoring.logger import ThrottledWarning, get_logger

DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "sentryield-bot/0.1"}


class PriceSource(Protocol):
    """What the rotation engine needs from a price feed."""

    def get_price_usd(self, symbol: str) -> float:
        """Return the USD price for a single token or raise."""

    def get_stable_prices_usd(self) -> Dict[str, float]:
        """Return USD prices for every configured stable symbol."""


@dataclass(slots=True)
class _CacheEntry:
    value: float
    expires_at: float


@dataclass(slots=True)
class PriceOracleTelemetry:
    """Cumulative counters since the oracle was created."""

    cache_fresh_hits: int = 0
    stale_fallback_hits: int = 0
    stable_fallback_hits: int = 0
    network_fetch_successes: int = 0
    fetch_failures: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def _is_valid_price(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


class PriceOracle:
    """HTTP price oracle over a ``/simple/price`` endpoint with stale fallback.

    Fresh cache hits never touch the network. Failed lookups fall back to the
    last known value (even if expired) and re-arm it for
    ``stale_fallback_ttl_seconds`` so a degraded upstream is not retried in a
    tight loop. A 429 response opens a cooldown window during which fetches
    fail immediately without issuing a request.
    """

    def __init__(
        self,
        config: Optional[PriceOracleConfig] = None,
        session: Optional[requests.Session] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or get_app_config().price_oracle
        self._session = session or requests.Session()
        self._clock = clock
        self._cache_ttl = max(float(self._config.cache_ttl_seconds), 0.0)
        self._rate_limit_cooldown = max(1.0, float(self._config.rate_limit_cooldown_seconds))
        self._stale_ttl = max(self._cache_ttl, float(self._config.stale_fallback_ttl_seconds))
        self._stable_symbols: List[str] = list(
            dict.fromkeys(normalize_symbol(symbol) for symbol in self._config.stable_symbols)
        )
        self._feed_ids = {normalize_symbol(k): v for k, v in self._config.feed_ids.items()}
        self._cache: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._rate_limited_until = 0.0
        self._telemetry = PriceOracleTelemetry()
        self._logger = get_logger(__name__)
        self._warnings = ThrottledWarning(
            self._logger, self._config.warning_cooldown_seconds, timer=clock
        )

    def get_price_usd(self, symbol: str) -> float:
        normalized = normalize_symbol(symbol)
        fresh = self._read_cached(normalized, allow_stale=False)
        if fresh is not None:
            self._count("cache_fresh_hits")
            return fresh

        try:
            values = self._fetch_prices([normalized])
            value = values.get(normalized)
            if value is None:
                raise InvalidPriceError(f"Live price unavailable for {normalized}.")
        except PriceFeedError as exc:
            self._count("fetch_failures")
            stale = self._read_cached(normalized, allow_stale=True)
            if stale is None:
                raise
            self._count("stale_fallback_hits")
            self._write_cache(normalized, stale, self._stale_ttl)
            self._warnings.warn(
                f"single:{normalized}",
                "Using stale cached price for %s: %s",
                normalized,
                exc,
            )
            return stale

        self._write_cache(normalized, value, self._cache_ttl)
        self._count("network_fetch_successes")
        return value

    def get_stable_prices_usd(self) -> Dict[str, float]:
        symbols = self._stable_symbols
        fresh = self._read_snapshot(symbols, allow_stale=False)
        if fresh is not None:
            self._count("cache_fresh_hits")
            return fresh

        try:
            values = self._fetch_prices(symbols)
        except PriceFeedError as exc:
            self._count("fetch_failures")
            stale = self._read_snapshot(symbols, allow_stale=True)
            if stale is not None:
                self._count("stable_fallback_hits")
                self._write_snapshot(stale, self._stale_ttl)
                self._warnings.warn(
                    "stable:fallback", "Using stale cached stable prices: %s", exc
                )
                return stale
            # Stables are assumed pegged when nothing is known; the depeg guard
            # cannot see through this value.
            pegged = {symbol: 1.0 for symbol in symbols}
            self._count("stable_fallback_hits")
            self._write_snapshot(pegged, self._stale_ttl)
            self._warnings.warn(
                "stable:hard-fallback",
                "Falling back to $1.00 stable prices (no cache): %s",
                exc,
            )
            return pegged

        self._write_snapshot(values, self._cache_ttl)
        self._count("network_fetch_successes")
        return values

    def telemetry(self) -> PriceOracleTelemetry:
        with self._lock:
            return PriceOracleTelemetry(**self._telemetry.as_dict())

    def rate_limit_remaining(self) -> float:
        with self._lock:
            return max(self._rate_limited_until - self._clock(), 0.0)

    def _fetch_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        unique = list(dict.fromkeys(normalize_symbol(symbol) for symbol in symbols))
        if not unique:
            raise PriceFeedError("Price fetch requested with empty symbol set.")

        remaining = self.rate_limit_remaining()
        if remaining > 0:
            raise RateLimitCooldownError(remaining)

        ids: List[str] = []
        for symbol in unique:
            feed_id = self._feed_ids.get(symbol)
            if not feed_id:
                raise InvalidPriceError(f"Missing price feed id mapping for symbol: {symbol}")
            ids.append(feed_id)

        url = f"{self._config.base_url.rstrip('/')}/simple/price"
        try:
            response = self._session.get(
                url,
                params={"ids": ",".join(ids), "vs_currencies": "usd"},
                headers=DEFAULT_HEADERS,
                timeout=self._config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise PriceFeedError(f"Price feed request failed: {exc}") from exc

        if response.status_code != 200:
            if response.status_code == 429:
                with self._lock:
                    self._rate_limited_until = self._clock() + self._rate_limit_cooldown
            raise PriceFeedError(f"Price feed returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidPriceError("Price feed returned a non-JSON body.") from exc
        if not isinstance(payload, dict):
            raise InvalidPriceError("Price feed returned an unexpected payload shape.")

        result: Dict[str, float] = {}
        for symbol, feed_id in zip(unique, ids):
            entry = payload.get(feed_id)
            value = entry.get("usd") if isinstance(entry, dict) else None
            if not _is_valid_price(value):
                raise InvalidPriceError(f"Invalid USD price for {symbol} ({feed_id}): {value!r}")
            result[symbol] = float(value)
        return result

    def _read_cached(self, symbol: str, *, allow_stale: bool) -> Optional[float]:
        with self._lock:
            entry = self._cache.get(symbol)
            if entry is None:
                return None
            if not allow_stale and entry.expires_at <= self._clock():
                return None
            return entry.value

    def _read_snapshot(self, symbols: List[str], *, allow_stale: bool) -> Optional[Dict[str, float]]:
        snapshot: Dict[str, float] = {}
        for symbol in symbols:
            value = self._read_cached(symbol, allow_stale=allow_stale)
            if value is None:
                return None
            snapshot[symbol] = value
        return snapshot

    def _write_cache(self, symbol: str, value: float, ttl: float) -> None:
        if not _is_valid_price(value):
            raise InvalidPriceError(f"Refusing to cache invalid price for {symbol}: {value!r}")
        entry = _CacheEntry(value=float(value), expires_at=self._clock() + ttl)
        with self._lock:
            self._cache[normalize_symbol(symbol)] = entry

    def _write_snapshot(self, values: Dict[str, float], ttl: float) -> None:
        for symbol, value in values.items():
            self._write_cache(symbol, value, ttl)

    def _count(self, field_name: str) -> None:
        with self._lock:
            setattr(self._telemetry, field_name, getattr(self._telemetry, field_name) + 1)


__all__ = ["PriceOracle", "PriceOracleTelemetry", "PriceSource", "normalize_symbol"]
