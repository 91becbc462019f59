"""Exception hierarchy shared by the rotation engine and its collaborators."""

from __future__ import annotations


class SentryieldError(Exception):
    """Base class for all bot errors."""


class ConfigurationError(SentryieldError, ValueError):
    """Invalid or missing settings; fatal before the scan loop starts."""


class PriceFeedError(SentryieldError):
    """Upstream price lookup failed (timeout, non-2xx, bad payload)."""


class RateLimitCooldownError(PriceFeedError):
    """A previous 429 put the price feed into cooldown; no request was issued."""

    def __init__(self, remaining_seconds: float) -> None:
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Price feed rate-limit cooldown active ({max(1, int(remaining_seconds + 0.999))}s remaining)."
        )


class InvalidPriceError(PriceFeedError):
    """The upstream returned a zero, negative, non-finite or missing price."""


class RpcError(SentryieldError):
    """JSON-RPC transport or node error."""


class UnsupportedFunctionError(RpcError):
    """The target contract reverted the call; the function is treated as absent."""


class AdapterError(SentryieldError):
    """Base class for venue adapter failures."""


class AdapterDisabledError(AdapterError):
    """The venue's adapter exists but is disabled in this runtime."""


class AdapterNotFoundError(AdapterError):
    """No adapter is registered for the pool's adapter id."""


class ExecutionError(SentryieldError):
    """The vault executor rejected or failed to submit a request."""


__all__ = [
    "AdapterDisabledError",
    "AdapterError",
    "AdapterNotFoundError",
    "ConfigurationError",
    "ExecutionError",
    "InvalidPriceError",
    "PriceFeedError",
    "RateLimitCooldownError",
    "RpcError",
    "SentryieldError",
    "UnsupportedFunctionError",
]
