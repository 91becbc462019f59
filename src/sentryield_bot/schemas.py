"""Data models shared by the oracle, guards, adapters and the rotation engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .config.settings import PoolConfig


class GuardReason(str, Enum):
    """Fixed reason codes carried by every guard result."""

    DEPEG_GUARD_OK = "DEPEG_GUARD_OK"
    DEPEG_GUARD_TRIGGERED = "DEPEG_GUARD_TRIGGERED"
    SLIPPAGE_GUARD_OK = "SLIPPAGE_GUARD_OK"
    SLIPPAGE_GUARD_TRIGGERED = "SLIPPAGE_GUARD_TRIGGERED"
    APR_CLIFF_GUARD_OK = "APR_CLIFF_GUARD_OK"
    APR_CLIFF_GUARD_TRIGGERED = "APR_CLIFF_GUARD_TRIGGERED"
    APR_CLIFF_GUARD_NOT_ENOUGH_DATA = "APR_CLIFF_GUARD_NOT_ENOUGH_DATA"
    APR_CLIFF_GUARD_PREV_ZERO = "APR_CLIFF_GUARD_PREV_ZERO"


@dataclass(slots=True, frozen=True)
class GuardResult:
    """Atomic output of a guard evaluator."""

    triggered: bool
    reason: GuardReason
    details: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.reason, GuardReason):
            raise TypeError("GuardResult.reason must be a GuardReason code")

    def to_dict(self) -> Dict[str, Any]:
        return {"triggered": self.triggered, "reason": self.reason.value, "details": self.details}


@dataclass(slots=True, frozen=True)
class PoolOnChainState:
    """Point-in-time read of a venue, in token units."""

    pool_id: str
    tvl_raw: int
    token_decimals: int
    available_liquidity_raw: int
    fetched_at: datetime

    @property
    def tvl_tokens(self) -> float:
        return self.tvl_raw / (10 ** self.token_decimals)

    @property
    def available_liquidity_tokens(self) -> float:
        return self.available_liquidity_raw / (10 ** self.token_decimals)


@dataclass(slots=True, frozen=True)
class PoolSnapshot:
    """Derived per-tick view of a pool used for guard and yield comparisons."""

    pool: PoolConfig
    state: PoolOnChainState
    tvl_usd: float
    reward_price_usd: float
    incentive_apr_bps: float
    net_apy_bps: float
    slippage_bps: float

    @property
    def pool_id(self) -> str:
        return self.pool.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poolId": self.pool.id,
            "protocol": self.pool.protocol,
            "pair": self.pool.pair.value,
            "tvlUsd": self.tvl_usd,
            "rewardPriceUsd": self.reward_price_usd,
            "baseApyBps": self.pool.base_apy_bps,
            "incentiveAprBps": self.incentive_apr_bps,
            "netApyBps": self.net_apy_bps,
            "slippageBps": self.slippage_bps,
            "fetchedAt": self.state.fetched_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class EnterIntent:
    """What the engine wants to deposit; adapters turn it into a call payload."""

    pool: PoolConfig
    amount_in: int
    min_out: int
    deadline: int
    net_apy_bps: float
    intended_hold_seconds: int


@dataclass(slots=True, frozen=True)
class ExitIntent:
    pool: PoolConfig
    token_out: str
    amount_in: int
    min_out: int
    deadline: int


@dataclass(slots=True, frozen=True)
class VaultEnterRequest:
    target: str
    pool: str
    token_in: str
    lp_token: str
    amount_in: int
    min_out: int
    deadline: int
    data: str
    pair: str
    protocol: str
    net_apy_bps: float
    intended_hold_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "pool": self.pool,
            "tokenIn": self.token_in,
            "lpToken": self.lp_token,
            "amountIn": str(self.amount_in),
            "minOut": str(self.min_out),
            "deadline": self.deadline,
            "data": self.data,
            "pair": self.pair,
            "protocol": self.protocol,
            "netApyBps": self.net_apy_bps,
            "intendedHoldSeconds": self.intended_hold_seconds,
        }


@dataclass(slots=True, frozen=True)
class VaultExitRequest:
    target: str
    pool: str
    lp_token: str
    token_out: str
    amount_in: int
    min_out: int
    deadline: int
    data: str
    pair: str
    protocol: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "pool": self.pool,
            "lpToken": self.lp_token,
            "tokenOut": self.token_out,
            "amountIn": str(self.amount_in),
            "minOut": str(self.min_out),
            "deadline": self.deadline,
            "data": self.data,
            "pair": self.pair,
            "protocol": self.protocol,
        }


class DecisionAction(str, Enum):
    HOLD = "HOLD"
    ENTER = "ENTER"
    EXIT = "EXIT"
    ROTATE = "ROTATE"


class ExecutionStatus(str, Enum):
    """What happened at the execution boundary for a decision."""

    NOT_REQUIRED = "not_required"
    DRY_RUN = "dry_run"
    WITHHELD = "withheld"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class Position:
    pool_id: str
    entered_at: datetime


@dataclass(slots=True)
class StrategyDecision:
    """One per tick: HOLD, ENTER, EXIT or ROTATE(from, to)."""

    tick_id: str
    action: DecisionAction
    reason: str
    created_at: datetime
    from_pool_id: Optional[str] = None
    to_pool_id: Optional[str] = None
    guards: List[GuardResult] = field(default_factory=list)
    net_apy_bps: Dict[str, float] = field(default_factory=dict)
    delta_apy_bps: Optional[float] = None
    payback_hours: Optional[float] = None
    exit_request: Optional[VaultExitRequest] = None
    enter_request: Optional[VaultEnterRequest] = None
    execution: ExecutionStatus = ExecutionStatus.NOT_REQUIRED
    execution_detail: Optional[str] = None

    @property
    def is_move(self) -> bool:
        return self.action is not DecisionAction.HOLD

    def to_dict(self) -> Dict[str, Any]:
        payback = self.payback_hours
        if payback is not None and math.isinf(payback):
            payback_value: Any = "Infinity"
        else:
            payback_value = payback
        return {
            "tickId": self.tick_id,
            "action": self.action.value,
            "reason": self.reason,
            "createdAt": self.created_at.isoformat(),
            "fromPoolId": self.from_pool_id,
            "toPoolId": self.to_pool_id,
            "guards": [guard.to_dict() for guard in self.guards],
            "netApyBps": dict(self.net_apy_bps),
            "deltaApyBps": self.delta_apy_bps,
            "paybackHours": payback_value,
            "exitRequest": self.exit_request.to_dict() if self.exit_request else None,
            "enterRequest": self.enter_request.to_dict() if self.enter_request else None,
            "execution": self.execution.value,
            "executionDetail": self.execution_detail,
        }


__all__ = [
    "DecisionAction",
    "EnterIntent",
    "ExecutionStatus",
    "ExitIntent",
    "GuardReason",
    "GuardResult",
    "PoolOnChainState",
    "PoolSnapshot",
    "Position",
    "StrategyDecision",
    "VaultEnterRequest",
    "VaultExitRequest",
]
