"""Incentive APR, net APY and rotation payback math, all in basis points."""

from __future__ import annotations

import math

from ..utils.constants import BPS, HOURS_PER_YEAR, SECONDS_PER_YEAR


def round_bps(value: float) -> int:
    """Round to whole bps with ties going up (1.5 -> 2, 2.5 -> 3)."""
    return math.floor(value + 0.5)


def incentive_apr_bps(reward_rate_per_second: float, reward_price_usd: float, tvl_usd: float) -> int:
    """Annualized reward emissions in USD over TVL, rounded to whole bps."""

    if tvl_usd <= 0:
        return 0
    annual_rewards_usd = reward_rate_per_second * SECONDS_PER_YEAR * reward_price_usd
    return max(0, round_bps((annual_rewards_usd / tvl_usd) * BPS))


def net_apy_bps(base_apy_bps: float, incentive_bps: float, protocol_fee_bps: float) -> float:
    return max(0.0, base_apy_bps + incentive_bps - protocol_fee_bps)


def payback_hours(cost_bps: float, delta_apy_bps: float) -> float:
    """Hours of incremental yield needed to recoup ``cost_bps``; infinite if never."""

    if delta_apy_bps <= 0:
        return math.inf
    return (cost_bps / delta_apy_bps) * HOURS_PER_YEAR


__all__ = ["incentive_apr_bps", "net_apy_bps", "payback_hours", "round_bps"]
