from unittest.mock import MagicMock

import pytest

from vaulter_core.cache import cache_key, clear_cache, get_cache_dir, get_cached, set_cached
from vaulter_core.onchain import (
    Web3DelegationAgent,
    Web3DepositRegistry,
    Web3RewardOracle,
    fetch_delegator_details,
    send_transaction,
)

TX_ID = bytes.fromhex("aa" * 32)
VALIDATOR = "0x3333333333333333333333333333333333333333"
DELEGATOR = "0x1111111111111111111111111111111111111111"


@pytest.fixture(autouse=True)
def _isolated_cache(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))


@pytest.fixture
def w3():
    mock = MagicMock()
    mock.to_checksum_address.side_effect = lambda a: a
    mock.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 7}
    return mock


def _contract(w3):
    return w3.eth.contract.return_value


def test_cache_roundtrip_and_clear(capsys):
    key = cache_key("btc_tx", "0xabc", TX_ID.hex())
    assert get_cached(key) is None
    set_cached(key, {"amount": 1})
    assert get_cached(key) == {"amount": 1}

    clear_cache()
    assert "Cache cleared" in capsys.readouterr().err
    assert get_cached(key) is None


def test_cache_ignores_corrupt_entry():
    key = cache_key("x")
    (get_cache_dir() / f"{key}.json").write_text("{not json", encoding="utf-8")
    assert get_cached(key) is None


def test_registry_caches_nonzero_deposits(w3):
    btc_tx_map = _contract(w3).functions.btcTxMap.return_value.call
    btc_tx_map.return_value = (10_000_000, 1, 1_700_000_000, 1738589119, 0)

    registry = Web3DepositRegistry(w3)
    first = registry.lookup_deposit(TX_ID)
    second = Web3DepositRegistry(w3).lookup_deposit(TX_ID)

    assert first == second
    assert first.amount == 10_000_000
    assert first.locktime == 1738589119
    assert btc_tx_map.call_count == 1


def test_registry_refetches_zero_records(w3):
    btc_tx_map = _contract(w3).functions.btcTxMap.return_value.call
    btc_tx_map.return_value = (0, 0, 0, 0, 0)
    receipt_map = _contract(w3).functions.receiptMap.return_value.call
    receipt_map.return_value = ("0x0000000000000000000000000000000000000000", DELEGATOR, 0)

    registry = Web3DepositRegistry(w3)
    for _ in range(2):
        assert registry.lookup_deposit(TX_ID).amount == 0
        assert registry.lookup_delegation(TX_ID).round == 0

    assert btc_tx_map.call_count == 2
    assert receipt_map.call_count == 2


def test_registry_without_cache_always_calls(w3):
    receipt_map = _contract(w3).functions.receiptMap.return_value.call
    receipt_map.return_value = (VALIDATOR, DELEGATOR, 42)

    registry = Web3DepositRegistry(w3, use_cache=False)
    registry.lookup_delegation(TX_ID)
    record = registry.lookup_delegation(TX_ID)

    assert record.target == VALIDATOR
    assert record.owner == DELEGATOR
    assert record.round == 42
    assert receipt_map.call_count == 2


def test_send_transaction_raises_on_revert(w3):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 7}
    fn = MagicMock()
    fn.transact.return_value = b"\x01" * 32
    with pytest.raises(RuntimeError, match="reverted"):
        send_transaction(w3, fn, {"from": DELEGATOR})


def test_reward_oracle_dry_run_does_not_transact(w3):
    functions = _contract(w3).functions
    functions.roundTag.return_value.call.return_value = 20123
    functions.claimReward.return_value.call.return_value = [5, 0, 7]

    oracle = Web3RewardOracle(w3, DELEGATOR)
    assert oracle.current_round_number() == 20123
    assert oracle.settle_and_return_rewards() == [5, 0, 7]
    functions.claimReward.return_value.transact.assert_not_called()

    live = Web3RewardOracle(w3, DELEGATOR, dry_run=False)
    assert live.settle_and_return_rewards() == [5, 0, 7]
    functions.claimReward.return_value.transact.assert_called_once_with({"from": DELEGATOR})


def test_delegation_agent_reads_realtime_amount(w3):
    functions = _contract(w3).functions
    functions.getCandidateListByDelegator.return_value.call.return_value = [VALIDATOR]
    functions.getDelegator.return_value.call.return_value = (0, 800 * 10**18, 0, 20123)

    agent = Web3DelegationAgent(w3, DELEGATOR)
    assert agent.get_delegation(VALIDATOR, DELEGATOR) == 800 * 10**18

    rows = fetch_delegator_details(agent, DELEGATOR)
    assert len(rows) == 1
    assert rows[0].candidate == VALIDATOR
    assert rows[0].staked_amount_wei == 0
    assert rows[0].change_round == 20123


def test_delegation_agent_sends_value_with_delegate(w3):
    functions = _contract(w3).functions
    agent = Web3DelegationAgent(w3, DELEGATOR)

    agent.delegate(VALIDATOR, 10)
    agent.undelegate(VALIDATOR, 4)

    functions.delegateCoin.assert_called_once_with(VALIDATOR)
    functions.delegateCoin.return_value.transact.assert_called_once_with({"from": DELEGATOR, "value": 10})
    functions.undelegateCoin.assert_called_once_with(VALIDATOR, 4)
