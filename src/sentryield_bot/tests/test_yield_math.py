from __future__ import annotations

import math

from sentryield_bot.analysis.yield_math import incentive_apr_bps, net_apy_bps, payback_hours, round_bps
from sentryield_bot.utils.constants import SECONDS_PER_YEAR


def test_incentive_apr_zero_cases() -> None:
    assert incentive_apr_bps(0, 1, 1000) == 0
    assert incentive_apr_bps(5, 2, 0) == 0
    assert incentive_apr_bps(5, 2, -10) == 0


def test_incentive_apr_annualizes_rewards() -> None:
    # 100 USD of rewards per year over 1000 USD TVL is 10%.
    rate = 100 / SECONDS_PER_YEAR
    assert incentive_apr_bps(rate, 1.0, 1000) == 1000
    assert incentive_apr_bps(rate, 0.5, 1000) == 500


def test_net_apy_is_floored() -> None:
    assert net_apy_bps(100, 50, 200) == 0
    assert net_apy_bps(420, 30, 8) == 442


def test_payback_hours() -> None:
    assert math.isinf(payback_hours(12, 0))
    assert math.isinf(payback_hours(12, -5))
    assert payback_hours(100, 200) == 4380
    assert math.isclose(payback_hours(12, 300), 350.4)


def test_round_bps_sends_ties_up() -> None:
    assert round_bps(0.5) == 1
    assert round_bps(2.5) == 3
    assert round_bps(3.5) == 4
    assert round_bps(-2.5) == -2
    assert round_bps(2.4999) == 2
