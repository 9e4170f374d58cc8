"""Web3-backed implementations of the collaborator protocols (Core chain system contracts)."""

import logging
from typing import TYPE_CHECKING, Any

from vaulter_core.cache import cache_key, get_cached, set_cached
from vaulter_core.constants import (
    BITCOIN_STAKE_ADDRESS,
    BITCOIN_STAKE_MIN_ABI,
    CORE_AGENT_ADDRESS,
    CORE_AGENT_MIN_ABI,
    STAKE_HUB_ADDRESS,
    STAKE_HUB_MIN_ABI,
)
from vaulter_core.formatters import as_int, normalize_hex_str
from vaulter_core.models import DelegationInfo, DelegationRecord, DepositRecord

if TYPE_CHECKING:
    from web3 import Web3  # pragma: no cover

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _contract(w3: "Web3", address: str, abi: list[dict]) -> Any:
    return w3.eth.contract(address=w3.to_checksum_address(address), abi=abi)


def send_transaction(w3: "Web3", fn: Any, tx_params: dict[str, Any]) -> Any:
    """Send a contract transaction and wait for it to be mined; reverted transactions raise."""
    tx_hash = fn.transact(tx_params)
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise RuntimeError(f"Transaction {normalize_hex_str(tx_hash)} reverted")
    logger.debug("Transaction %s mined in block %s", normalize_hex_str(tx_hash), receipt["blockNumber"])
    return receipt


class Web3RewardOracle:
    """
    StakeHub round counter and reward claim.

    With `dry_run` (the default) the reward vector is only simulated with eth_call, so the
    chain is left untouched and the same rewards are returned again next time.
    """

    def __init__(
        self,
        w3: "Web3",
        vault_address: str,
        *,
        stake_hub_address: str = STAKE_HUB_ADDRESS,
        dry_run: bool = True,
    ) -> None:
        self.w3 = w3
        self.vault_address = w3.to_checksum_address(vault_address)
        self.contract = _contract(w3, stake_hub_address, STAKE_HUB_MIN_ABI)
        self.dry_run = dry_run

    def current_round_number(self) -> int:
        return as_int(self.contract.functions.roundTag().call())

    def settle_and_return_rewards(self) -> list[int]:
        fn = self.contract.functions.claimReward()
        rewards = [as_int(r) for r in fn.call({"from": self.vault_address})]
        if not self.dry_run:
            send_transaction(self.w3, fn, {"from": self.vault_address})
        return rewards


class Web3DepositRegistry:
    """
    BitcoinStake deposit and receipt lookups.

    A nonzero record never changes afterwards, so those are kept in the disk cache; zero
    records (not yet relayed) are always fetched again.
    """

    def __init__(self, w3: "Web3", *, address: str = BITCOIN_STAKE_ADDRESS, use_cache: bool = True) -> None:
        self.w3 = w3
        self.address = address
        self.contract = _contract(w3, address, BITCOIN_STAKE_MIN_ABI)
        self.use_cache = use_cache

    def lookup_deposit(self, tx_id: bytes) -> DepositRecord:
        key = cache_key("btc_tx", self.address.lower(), tx_id.hex())
        if self.use_cache:
            cached = get_cached(key)
            if cached is not None:
                return DepositRecord(**cached)

        amount, _output_index, block_timestamp, lock_time, _used_height = self.contract.functions.btcTxMap(
            tx_id
        ).call()
        record = DepositRecord(amount=as_int(amount), locktime=as_int(lock_time), timestamp=as_int(block_timestamp))
        if self.use_cache and record.amount > 0:
            set_cached(key, record.__dict__)
        return record

    def lookup_delegation(self, tx_id: bytes) -> DelegationRecord:
        key = cache_key("btc_receipt", self.address.lower(), tx_id.hex())
        if self.use_cache:
            cached = get_cached(key)
            if cached is not None:
                return DelegationRecord(**cached)

        candidate, delegator, round_number = self.contract.functions.receiptMap(tx_id).call()
        record = DelegationRecord(target=str(candidate), owner=str(delegator), round=as_int(round_number))
        if self.use_cache and record.target.lower() != ZERO_ADDRESS:
            set_cached(key, record.__dict__)
        return record


class Web3DelegationAgent:
    """CoreAgent delegation of CORE held by `delegator` (the account that signs the transactions)."""

    def __init__(self, w3: "Web3", delegator: str, *, address: str = CORE_AGENT_ADDRESS) -> None:
        self.w3 = w3
        self.delegator = w3.to_checksum_address(delegator)
        self.contract = _contract(w3, address, CORE_AGENT_MIN_ABI)

    def delegate(self, target: str, amount: int) -> None:
        fn = self.contract.functions.delegateCoin(self.w3.to_checksum_address(target))
        send_transaction(self.w3, fn, {"from": self.delegator, "value": amount})

    def undelegate(self, target: str, amount: int) -> None:
        fn = self.contract.functions.undelegateCoin(self.w3.to_checksum_address(target), amount)
        send_transaction(self.w3, fn, {"from": self.delegator})

    def list_delegation_targets(self, delegator: str) -> list[str]:
        fn = self.contract.functions.getCandidateListByDelegator(self.w3.to_checksum_address(delegator))
        return [str(c) for c in fn.call()]

    def delegation_info(self, target: str, delegator: str) -> DelegationInfo:
        staked, realtime, transferred, change_round = self.contract.functions.getDelegator(
            self.w3.to_checksum_address(target), self.w3.to_checksum_address(delegator)
        ).call()
        return DelegationInfo(
            candidate=str(target),
            staked_amount_wei=as_int(staked),
            realtime_amount_wei=as_int(realtime),
            transferred_amount_wei=as_int(transferred),
            change_round=as_int(change_round),
        )

    def get_delegation(self, target: str, delegator: str) -> int:
        return self.delegation_info(target, delegator).realtime_amount_wei


def fetch_delegator_details(agent: Web3DelegationAgent, delegator: str) -> list[DelegationInfo]:
    """All CoreAgent delegations of `delegator`, one row per candidate."""
    return [agent.delegation_info(c, delegator) for c in agent.list_delegation_targets(delegator)]
