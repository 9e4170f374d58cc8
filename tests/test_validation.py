from dataclasses import replace

import pytest

from conftest import BTC, CORE, SCRIPT_B, record, settle
from vaulter_core.exceptions import ValidationError
from vaulter_core.models import GradeInterval
from vaulter_core.rewards import default_grade_table
from vaulter_core.validation import (
    validate_fee_rate,
    validate_grade,
    validate_grade_table,
    validate_reserve_ratio,
    validate_vault_invariants,
)


def test_default_grade_table_is_valid():
    assert validate_grade_table(default_grade_table()) == []


def test_grade_table_gap_is_reported():
    grades = default_grade_table()
    grades[2] = replace(grades[2], lower=9_000)
    issues = validate_grade_table(grades)
    assert len(issues) == 1
    assert "Grade 2" in issues[0]
    with pytest.raises(ValidationError):
        validate_grade_table(grades, warn_only=False)


def test_grade_table_slot_count():
    assert validate_grade_table(default_grade_table()[:4]) == ["Grade table has 4 slots (expected 5)"]


@pytest.mark.parametrize(
    ("slot", "grade"),
    [
        (-1, GradeInterval(0, 1, 0)),
        (5, GradeInterval(0, 1, 0)),
        (0, GradeInterval(-1, 1, 0)),
        (0, GradeInterval(5, 5, 0)),
        (0, GradeInterval(0, 5, 10_001)),
    ],
)
def test_validate_grade_rejects(slot, grade):
    with pytest.raises(ValidationError):
        validate_grade(slot, grade)


def test_parameter_bounds():
    validate_fee_rate(0)
    validate_fee_rate(1000)
    validate_reserve_ratio(100)
    with pytest.raises(ValueError):
        validate_fee_rate(1001)
    with pytest.raises(ValueError):
        validate_reserve_ratio(0)


def test_vault_invariants_hold(vault):
    vault.deposit("alice", 1600 * CORE)
    record(vault, SCRIPT_B, BTC // 10)
    settle(vault, 10 * CORE)
    assert validate_vault_invariants(vault.state) == []


def test_vault_invariants_detect_tampering(vault):
    vault.deposit("alice", 10 * CORE)
    vault.state.shares.total_supply += 1
    vault.state.pending_cross_rewards = 5
    vault.state.cash = -1

    issues = validate_vault_invariants(vault.state)

    assert any("total supply" in i for i in issues)
    assert any("Negative cash" in i for i in issues)
    assert any("BTC reward pool" in i for i in issues)
    with pytest.raises(ValidationError):
        validate_vault_invariants(vault.state, warn_only=False)


def test_vault_invariants_detect_active_total_drift(vault):
    record(vault, SCRIPT_B, BTC // 10)
    vault.state.ledger.total_staked += 1
    issues = validate_vault_invariants(vault.state)
    assert issues == [f"Active positions sum to {BTC // 10} sats, total BTC staked is {BTC // 10 + 1}"]
