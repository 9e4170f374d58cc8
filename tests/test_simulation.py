import pytest

from conftest import BTC, CORE, SCRIPT_A_LOCKTIME, SCRIPT_B, SEGWIT_TX_HEX, fake_tx
from vaulter_core.exceptions import ValidationError, WithdrawalLockedError
from vaulter_core.simulation import (
    InMemoryDelegationAgent,
    InMemoryDepositRegistry,
    InMemoryRewardOracle,
    run_scenario,
)

VALIDATOR = "0x3333333333333333333333333333333333333333"


def _scenario(*steps, **extra):
    return {"start_time": SCRIPT_A_LOCKTIME - 1000, "steps": list(steps), **extra}


def test_reward_oracle_pays_out_once():
    oracle = InMemoryRewardOracle()
    oracle.add_reward(5)
    oracle.add_reward(7)
    oracle.set_round(3)
    assert oracle.current_round_number() == 3
    assert oracle.settle_and_return_rewards() == [5, 7]
    assert oracle.settle_and_return_rewards() == []


def test_registry_reads_unknown_ids_as_zero():
    registry = InMemoryDepositRegistry()
    deposit = registry.lookup_deposit(b"\x00" * 32)
    assert deposit.amount == 0
    assert registry.lookup_delegation(b"\x00" * 32).target == "0x0000000000000000000000000000000000000000"

    tx_id = registry.register(fake_tx(SCRIPT_B), SCRIPT_B, BTC, target=VALIDATOR, round_number=4)
    assert registry.lookup_deposit(tx_id).locktime == 1738589119
    assert registry.lookup_delegation(tx_id).round == 4


def test_delegation_agent_tracks_single_delegator():
    agent = InMemoryDelegationAgent("0xAbC0000000000000000000000000000000000000")
    agent.delegate(VALIDATOR, 10)
    assert agent.list_delegation_targets("0xabc0000000000000000000000000000000000000") == [VALIDATOR]
    assert agent.list_delegation_targets(VALIDATOR) == []
    assert agent.get_delegation(VALIDATOR, "0xabc0000000000000000000000000000000000000") == 10
    with pytest.raises(RuntimeError):
        agent.undelegate(VALIDATOR, 11)
    agent.reject_reason = "nope"
    with pytest.raises(RuntimeError, match="nope"):
        agent.delegate(VALIDATOR, 1)
    # rejection applies once
    agent.delegate(VALIDATOR, 1)
    assert agent.total_delegated() == 11


def test_run_scenario_records_one_summary_per_settlement():
    result = run_scenario(
        _scenario(
            {"op": "deposit", "from": "alice", "amount": "1600"},
            {"op": "record_stake", "raw_tx": SEGWIT_TX_HEX, "script": SCRIPT_B.hex(), "amount": "0.1"},
            {"op": "stake", "target": VALIDATOR, "amount": 1000},
            {"op": "withdraw", "from": "alice", "shares": "1", "expect_error": "WithdrawalLockedError"},
            {"op": "reward", "amount": "10"},
            {"op": "advance"},
            {"op": "settle"},
            {"op": "claim", "from": "alice"},
            {"op": "advance"},
            {"op": "settle"},
            {"op": "withdraw", "from": "alice"},
        )
    )

    assert [s.round for s in result.summaries] == [1, 2]
    first = result.summaries[0]
    assert first.total_assets_wei == 1600 * CORE
    assert first.total_reserve_staked_wei == 800 * CORE
    assert first.pending_cross_rewards_wei == 475 * CORE // 100
    assert first.cross_ratio_bp == 5000
    assert result.failures[0][0] == 3
    assert result.failures[0][1].startswith("WithdrawalLockedError")

    vault = result.vault
    assert vault.balance_of("alice") == 0
    assert vault.state.cash == 0
    # 1604.75 CORE paid from 810 liquid CORE: 794.75 undelegated
    assert vault.state.total_reserve_staked == 525 * CORE // 100


def test_run_scenario_propagates_unexpected_errors():
    with pytest.raises(WithdrawalLockedError):
        run_scenario(
            _scenario(
                {"op": "deposit", "from": "alice", "amount": "1"},
                {"op": "withdraw", "from": "alice"},
            )
        )


def test_run_scenario_checks_expected_errors():
    with pytest.raises(ValidationError, match="expected DelegationError"):
        run_scenario(_scenario({"op": "deposit", "from": "alice", "amount": "1", "expect_error": "DelegationError"}))
    with pytest.raises(ValidationError, match="expected DelegationError, got WithdrawalLockedError"):
        run_scenario(
            _scenario(
                {"op": "deposit", "from": "alice", "amount": "1"},
                {"op": "withdraw", "from": "alice", "expect_error": "DelegationError"},
            )
        )


def test_run_scenario_rejects_unknown_op():
    with pytest.raises(ValidationError, match="unknown op"):
        run_scenario(_scenario({"op": "mint"}))


def test_run_scenario_applies_config_and_governance_steps():
    result = run_scenario(
        _scenario(
            {"op": "set_fee_rate", "fee_rate_bp": 1000},
            {"op": "reward", "amount": "10"},
            {"op": "advance"},
            {"op": "settle"},
            {"op": "withdraw_fees"},
            config={"cross_reward_ratio_bp": 0},
        )
    )
    s = result.summaries[0]
    assert s.pending_protocol_fees_wei == CORE
    assert s.pending_reserve_rewards_wei == 9 * CORE
    assert s.unallocated_rewards_wei == 0
    assert result.vault.state.pending_protocol_fees == 0


def test_run_scenario_expiry_with_clock_steps():
    result = run_scenario(
        _scenario(
            {"op": "record_stake", "raw_tx": fake_tx(SCRIPT_B).hex(), "script": SCRIPT_B.hex(), "amount": "sats:5000"},
            {"op": "set_time", "time": 1738589119},
            {"op": "advance"},
            {"op": "settle"},
        )
    )
    assert result.summaries[0].active_positions == 0
    assert result.summaries[0].total_cross_staked_sats == 0
