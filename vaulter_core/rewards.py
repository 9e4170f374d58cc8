"""
Reward split and rebalancing math.

All functions are pure integer arithmetic; the vault applies their results to its state.

Deviation factor: how far the BTC/CORE mix is from target, in DEVIATION_SCALE units.
At exactly the target (e.g. 0.1 BTC against 1600 CORE with an 8000 CORE/BTC target and a
50% reserve ratio) it equals DEVIATION_SCALE; more BTC pushes it up, more CORE pushes it
down.
"""

from collections.abc import Sequence

from vaulter_core.constants import (
    DEFAULT_GRADE_TABLE,
    DEVIATION_SCALE,
    FALLBACK_CROSS_REWARD_RATIO_BP,
    SATS_TO_WEI,
    TOTAL_BASIS_POINTS,
)
from vaulter_core.models import GradeInterval


def default_grade_table() -> list[GradeInterval]:
    return [GradeInterval(lower, upper, ratio) for lower, upper, ratio in DEFAULT_GRADE_TABLE]


def split_fee(gross_reward: int, fee_rate_bp: int) -> tuple[int, int]:
    """Returns (protocol_fee, net_reward)."""
    fee = gross_reward * fee_rate_bp // TOTAL_BASIS_POINTS
    return fee, gross_reward - fee


def cross_reward_pool(net_reward: int, cross_ratio_bp: int) -> int:
    return net_reward * cross_ratio_bp // TOTAL_BASIS_POINTS


def reserve_reward_pool(net_reward: int, reserve_ratio_bp: int) -> int:
    return net_reward * reserve_ratio_bp // TOTAL_BASIS_POINTS


def position_share(pool: int, position_amount: int, total_staked: int) -> int:
    """Pro-rata slice of the BTC reward pool for one position."""
    if total_staked <= 0:
        return 0
    return pool * position_amount // total_staked


def required_reserve_stake(total_cross_sats: int, target_ratio: int) -> int:
    """CORE (wei) that must be delegated to back the BTC stake at `target_ratio` CORE per BTC."""
    return total_cross_sats * SATS_TO_WEI * target_ratio


def deviation_factor(
    total_cross_sats: int,
    total_reserve_wei: int,
    *,
    target_ratio: int,
    reserve_ratio_percent: int,
) -> int:
    """
    current BTC/CORE ratio divided by the target BTC/CORE ratio.

    The target counts only the delegated part of deposits, so the effective target is
    `target_ratio * 100 / reserve_ratio_percent` CORE deposited per BTC.
    """
    if total_reserve_wei <= 0 or reserve_ratio_percent <= 0:
        raise ZeroDivisionError("reserve deposits and reserve ratio must be > 0")
    numer = total_cross_sats * SATS_TO_WEI * target_ratio * 100 * DEVIATION_SCALE
    return numer // (total_reserve_wei * reserve_ratio_percent)


def select_cross_ratio(deviation: int, grades: Sequence[GradeInterval]) -> int:
    """BTC reward ratio of the first grade whose [lower, upper) contains `deviation`."""
    for grade in grades:
        if grade.contains(deviation):
            return grade.cross_ratio_bp
    return FALLBACK_CROSS_REWARD_RATIO_BP


def compute_cross_ratio(
    total_cross_sats: int,
    total_reserve_wei: int,
    *,
    target_ratio: int,
    reserve_ratio_percent: int,
    grades: Sequence[GradeInterval],
    min_cross_sats: int,
    min_reserve_wei: int,
) -> tuple[int, int | None]:
    """
    Returns (cross_ratio_bp, deviation). Deviation is None for the degenerate cases.

    No BTC to reward sends everything to CORE; no CORE sends everything to BTC.
    """
    if total_cross_sats <= 0 or total_cross_sats < min_cross_sats:
        return 0, None
    if total_reserve_wei <= 0 or total_reserve_wei < min_reserve_wei:
        return TOTAL_BASIS_POINTS, None
    deviation = deviation_factor(
        total_cross_sats,
        total_reserve_wei,
        target_ratio=target_ratio,
        reserve_ratio_percent=reserve_ratio_percent,
    )
    return select_cross_ratio(deviation, grades), deviation
