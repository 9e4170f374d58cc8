"""Validation logic for governance parameters and vault invariants."""

from collections.abc import Sequence
from typing import TYPE_CHECKING

from vaulter_core.constants import GRADE_SLOTS, MAX_FEE_RATE_BP, TOTAL_BASIS_POINTS
from vaulter_core.exceptions import ValidationError
from vaulter_core.models import GradeInterval

if TYPE_CHECKING:
    from vaulter_core.vault import VaultState  # pragma: no cover


def validate_fee_rate(fee_rate_bp: int) -> None:
    if not 0 <= fee_rate_bp <= MAX_FEE_RATE_BP:
        raise ValidationError(f"Fee rate {fee_rate_bp} bp outside [0, {MAX_FEE_RATE_BP}]")


def validate_reserve_ratio(reserve_ratio_percent: int) -> None:
    if not 0 < reserve_ratio_percent <= 100:
        raise ValidationError(f"Reserve ratio {reserve_ratio_percent}% outside (0, 100]")


def validate_target_ratio(target_ratio: int) -> None:
    if target_ratio <= 0:
        raise ValidationError(f"Target ratio must be > 0, got {target_ratio}")


def validate_reward_ratio(ratio_bp: int) -> None:
    if not 0 <= ratio_bp <= TOTAL_BASIS_POINTS:
        raise ValidationError(f"Reward ratio {ratio_bp} bp outside [0, {TOTAL_BASIS_POINTS}]")


def validate_grade(slot: int, grade: GradeInterval) -> None:
    """Checks applied when a single grade slot is replaced."""
    if not 0 <= slot < GRADE_SLOTS:
        raise ValidationError(f"Grade slot {slot} outside [0, {GRADE_SLOTS})")
    if grade.lower < 0:
        raise ValidationError(f"Grade {slot}: lower bound must be >= 0, got {grade.lower}")
    if grade.upper <= grade.lower:
        raise ValidationError(f"Grade {slot}: upper bound {grade.upper} must exceed lower bound {grade.lower}")
    validate_reward_ratio(grade.cross_ratio_bp)


def validate_grade_table(grades: Sequence[GradeInterval], *, warn_only: bool = True) -> list[str]:
    """
    Validate that the grade table is sorted and contiguous.

    Slots are replaced one at a time, so a table can be transiently non-contiguous; by
    default this only returns the issues.
    """
    issues: list[str] = []

    if len(grades) != GRADE_SLOTS:
        msg = f"Grade table has {len(grades)} slots (expected {GRADE_SLOTS})"
        issues.append(msg)
        if not warn_only:
            raise ValidationError(msg)

    for i in range(1, len(grades)):
        prev, cur = grades[i - 1], grades[i]
        if cur.lower != prev.upper:
            msg = f"Grade {i}: lower bound {cur.lower} does not continue grade {i - 1} upper bound {prev.upper}"
            issues.append(msg)
            if not warn_only:
                raise ValidationError(msg)

    return issues


def validate_vault_invariants(state: "VaultState", *, warn_only: bool = True) -> list[str]:
    """
    Check the bookkeeping invariants of a vault state.

    Returns list of violations. If warn_only=False, raises ValidationError on the first one.
    """
    issues: list[str] = []

    def report(msg: str) -> None:
        issues.append(msg)
        if not warn_only:
            raise ValidationError(msg)

    # 1. Share conservation
    balance_sum = sum(state.shares.balances.values())
    if balance_sum != state.shares.total_supply:
        report(f"Share balances sum to {balance_sum}, total supply is {state.shares.total_supply}")

    # 2. Non-negative totals and pools
    non_negative_fields = {
        "totalReserveDeposits": state.total_reserve_deposits,
        "totalReserveStaked": state.total_reserve_staked,
        "totalCrossStaked": state.ledger.total_staked,
        "cash": state.cash,
        "pendingCrossRewards": state.pending_cross_rewards,
        "pendingReserveRewards": state.pending_reserve_rewards,
        "pendingProtocolFees": state.pending_protocol_fees,
    }
    for name, value in non_negative_fields.items():
        if value < 0:
            report(f"Negative {name}: {value}")

    # 3. Reward ratio pair
    if not 0 <= state.cross_ratio_bp <= TOTAL_BASIS_POINTS:
        report(f"BTC reward ratio {state.cross_ratio_bp} outside [0, {TOTAL_BASIS_POINTS}]")
    if state.cross_ratio_bp + state.reserve_ratio_bp != TOTAL_BASIS_POINTS:
        report(f"Reward ratios {state.cross_ratio_bp}+{state.reserve_ratio_bp} != {TOTAL_BASIS_POINTS}")

    # 4. Active index matches the global BTC total
    active_sum = sum(state.ledger.positions[tx_id].amount for tx_id in state.ledger.active)
    if active_sum != state.ledger.total_staked:
        report(f"Active positions sum to {active_sum} sats, total BTC staked is {state.ledger.total_staked}")

    # 5. Owner pending rewards are backed by the BTC reward pool
    owner_pending = sum(o.pending_rewards for o in state.ledger.owners.values())
    if owner_pending != state.pending_cross_rewards:
        report(f"Owner pending rewards sum to {owner_pending}, BTC reward pool is {state.pending_cross_rewards}")

    issues.extend(validate_grade_table(state.grades, warn_only=warn_only))
    return issues
