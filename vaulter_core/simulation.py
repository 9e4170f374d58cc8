"""
In-memory collaborators and a scenario runner.

The in-memory oracle, registry and agent implement the collaborator protocols without a
chain, so a vault can be driven round by round from a JSON scenario:

    {
      "vault": "0x...", "owner": "0x...", "start_time": 1736000000,
      "config": {"fee_rate_bp": 500},
      "steps": [
        {"op": "deposit", "from": "0xalice", "amount": "1600"},
        {"op": "record_stake", "raw_tx": "0x...", "script": "0x...", "amount": "0.1"},
        {"op": "reward", "amount": "10"},
        {"op": "advance"},
        {"op": "settle"}
      ]
    }

Amounts are CORE / BTC decimals (or "wei:N" / "sats:N"). A step may carry
"expect_error": "<ExceptionName>" to assert that it fails.
"""

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tqdm import tqdm

from vaulter_core.bitcoin import extract_locktime_and_hash, transaction_id
from vaulter_core.constants import SECONDS_PER_ROUND
from vaulter_core.exceptions import ValidationError, VaultError
from vaulter_core.formatters import as_int, hex_to_bytes, parse_btc, parse_core
from vaulter_core.models import DelegationRecord, DepositRecord, VaultConfig, VaultSummary
from vaulter_core.vault import Vault

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class InMemoryRewardOracle:
    """Round counter plus a queue of rewards paid out on the next settlement."""

    def __init__(self, round_number: int = 0) -> None:
        self.round_number = round_number
        self.pending: list[int] = []

    def set_round(self, round_number: int) -> None:
        self.round_number = round_number

    def advance(self, rounds: int = 1) -> None:
        self.round_number += rounds

    def add_reward(self, amount: int) -> None:
        self.pending.append(amount)

    def current_round_number(self) -> int:
        return self.round_number

    def settle_and_return_rewards(self) -> list[int]:
        rewards, self.pending = self.pending, []
        return rewards


class InMemoryDepositRegistry:
    """Deposit and delegation records keyed by transaction id. Unknown ids read as zero records."""

    def __init__(self) -> None:
        self.deposits: dict[bytes, DepositRecord] = {}
        self.delegations: dict[bytes, DelegationRecord] = {}

    def add_deposit(self, tx_id: bytes, amount: int, locktime: int, timestamp: int = 0) -> None:
        self.deposits[tx_id] = DepositRecord(amount=amount, locktime=locktime, timestamp=timestamp)

    def add_delegation(self, tx_id: bytes, target: str, owner: str = ZERO_ADDRESS, round_number: int = 0) -> None:
        self.delegations[tx_id] = DelegationRecord(target=target, owner=owner, round=round_number)

    def register(
        self,
        raw_tx: bytes,
        script: bytes,
        amount: int,
        *,
        target: str,
        round_number: int = 0,
        timestamp: int = 0,
    ) -> bytes:
        """Register a stake transaction the way the relayer would. Returns its id."""
        tx_id = transaction_id(raw_tx)
        locktime, _ = extract_locktime_and_hash(script)
        self.add_deposit(tx_id, amount, locktime, timestamp)
        self.add_delegation(tx_id, target, round_number=round_number)
        return tx_id

    def lookup_deposit(self, tx_id: bytes) -> DepositRecord:
        return self.deposits.get(tx_id, DepositRecord(amount=0, locktime=0, timestamp=0))

    def lookup_delegation(self, tx_id: bytes) -> DelegationRecord:
        return self.delegations.get(tx_id, DelegationRecord(target=ZERO_ADDRESS, owner=ZERO_ADDRESS, round=0))


class InMemoryDelegationAgent:
    """
    CORE delegations of a single delegator.

    Setting `reject_reason` makes the next delegate/undelegate call fail with that message.
    """

    def __init__(self, delegator: str) -> None:
        self.delegator = delegator
        self.delegations: dict[str, int] = {}
        self.reject_reason: str | None = None

    def _check_rejected(self) -> None:
        if self.reject_reason is not None:
            reason, self.reject_reason = self.reject_reason, None
            raise RuntimeError(reason)

    def delegate(self, target: str, amount: int) -> None:
        self._check_rejected()
        self.delegations[target] = self.delegations.get(target, 0) + amount

    def undelegate(self, target: str, amount: int) -> None:
        self._check_rejected()
        delegated = self.delegations.get(target, 0)
        if amount > delegated:
            raise RuntimeError(f"undelegate {amount} exceeds delegation {delegated} to {target}")
        self.delegations[target] = delegated - amount

    def list_delegation_targets(self, delegator: str) -> list[str]:
        if delegator.lower() != self.delegator.lower():
            return []
        return [t for t, amount in self.delegations.items() if amount > 0]

    def get_delegation(self, target: str, delegator: str) -> int:
        if delegator.lower() != self.delegator.lower():
            return 0
        return self.delegations.get(target, 0)

    def total_delegated(self) -> int:
        return sum(self.delegations.values())


class ManualClock:
    """Wall clock the scenario controls."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@dataclass
class ScenarioResult:
    vault: Vault
    summaries: list[VaultSummary] = field(default_factory=list)
    failures: list[tuple[int, str]] = field(default_factory=list)  # (step index, error) of expected failures


def build_vault(
    address: str,
    owner: str,
    *,
    config: VaultConfig | None = None,
    start_time: int = 0,
    start_round: int = 0,
) -> Vault:
    """Create a vault wired to fresh in-memory collaborators and a manual clock."""
    return Vault(
        address,
        owner,
        InMemoryRewardOracle(start_round),
        InMemoryDepositRegistry(),
        InMemoryDelegationAgent(address),
        config=config,
        clock=ManualClock(start_time),
    )


def _shares_arg(vault: Vault, holder: str, value: Any) -> int:
    if value == "all":
        return vault.balance_of(holder)
    return parse_core(value)


def _step_deposit(vault: Vault, step: dict[str, Any]) -> None:
    vault.deposit(step["from"], parse_core(step["amount"]))


def _step_withdraw(vault: Vault, step: dict[str, Any]) -> None:
    vault.withdraw(step["from"], _shares_arg(vault, step["from"], step.get("shares", "all")))


def _step_claim(vault: Vault, step: dict[str, Any]) -> None:
    vault.claim_rewards(step["from"])


def _step_transfer(vault: Vault, step: dict[str, Any]) -> None:
    vault.transfer_shares(step["from"], step["to"], _shares_arg(vault, step["from"], step["shares"]))


def _step_record_stake(vault: Vault, step: dict[str, Any]) -> None:
    raw_tx = hex_to_bytes(step["raw_tx"])
    script = hex_to_bytes(step["script"])
    if "amount" in step:
        vault.registry.register(
            raw_tx,
            script,
            parse_btc(step["amount"]),
            target=step.get("target", vault.address),
            round_number=as_int(step.get("round"), default=vault.oracle.current_round_number()),
            timestamp=as_int(step.get("timestamp"), default=int(vault.clock())),
        )
    vault.record_stake(vault.owner, raw_tx, script)


def _step_reward(vault: Vault, step: dict[str, Any]) -> None:
    vault.oracle.add_reward(parse_core(step["amount"]))


def _step_advance(vault: Vault, step: dict[str, Any]) -> None:
    rounds = as_int(step.get("rounds"), default=1)
    vault.oracle.advance(rounds)
    vault.clock.advance(rounds * SECONDS_PER_ROUND)


def _step_set_time(vault: Vault, step: dict[str, Any]) -> None:
    vault.clock.now = as_int(step["time"])


def _step_stake(vault: Vault, step: dict[str, Any]) -> None:
    vault.stake_reserve(vault.owner, step["target"], parse_core(step["amount"]))


def _step_unstake(vault: Vault, step: dict[str, Any]) -> None:
    vault.unstake_reserve(vault.owner, parse_core(step["amount"]))


def _step_claim_cross(vault: Vault, step: dict[str, Any]) -> None:
    vault.claim_cross_asset_reward(
        hex_to_bytes(step["pubkey"]),
        hex_to_bytes(step["signature"]),
        step.get("message", ""),
        step["recipient"],
    )


def _step_set_grade(vault: Vault, step: dict[str, Any]) -> None:
    vault.set_grade(
        vault.owner,
        as_int(step["slot"]),
        as_int(step["lower"]),
        as_int(step["upper"]),
        as_int(step["ratio"]),
    )


def _step_set_fee_rate(vault: Vault, step: dict[str, Any]) -> None:
    vault.set_fee_rate(vault.owner, as_int(step["fee_rate_bp"]))


def _step_settle(vault: Vault, step: dict[str, Any]) -> None:
    vault.settle_round(vault.owner)


def _step_withdraw_fees(vault: Vault, step: dict[str, Any]) -> None:
    amount = step.get("amount")
    vault.withdraw_protocol_fees(vault.owner, None if amount is None else parse_core(amount))


def _step_pause(vault: Vault, step: dict[str, Any]) -> None:
    vault.pause(vault.owner)


def _step_unpause(vault: Vault, step: dict[str, Any]) -> None:
    vault.unpause(vault.owner)


STEP_HANDLERS: dict[str, Callable[[Vault, dict[str, Any]], None]] = {
    "deposit": _step_deposit,
    "withdraw": _step_withdraw,
    "claim": _step_claim,
    "transfer": _step_transfer,
    "record_stake": _step_record_stake,
    "reward": _step_reward,
    "advance": _step_advance,
    "settle": _step_settle,
    "set_time": _step_set_time,
    "stake": _step_stake,
    "unstake": _step_unstake,
    "claim_cross": _step_claim_cross,
    "set_grade": _step_set_grade,
    "set_fee_rate": _step_set_fee_rate,
    "withdraw_fees": _step_withdraw_fees,
    "pause": _step_pause,
    "unpause": _step_unpause,
}


def run_scenario(scenario: dict[str, Any], *, progress: bool = False) -> ScenarioResult:
    """Execute scenario steps against an in-memory vault; one summary is recorded per settlement."""
    config = VaultConfig(**scenario.get("config", {}))
    vault = build_vault(
        scenario.get("vault", "0x000000000000000000000000000000000000dEaD"),
        scenario.get("owner", "0x00000000000000000000000000000000000000AA"),
        config=config,
        start_time=as_int(scenario.get("start_time")),
        start_round=as_int(scenario.get("start_round")),
    )
    result = ScenarioResult(vault=vault)
    steps = scenario.get("steps", [])

    with tqdm(steps, desc="🧪 Running scenario", unit="step", file=sys.stderr, disable=not progress) as pbar:
        for i, step in enumerate(pbar):
            op = step.get("op")
            handler = STEP_HANDLERS.get(op)
            if handler is None:
                raise ValidationError(f"Step {i}: unknown op {op!r}")
            pbar.set_postfix(op=op, round=vault.current_round)

            expected = step.get("expect_error")
            try:
                handler(vault, step)
            except VaultError as ex:
                if expected is None:
                    raise
                if type(ex).__name__ != expected:
                    raise ValidationError(f"Step {i} ({op}): expected {expected}, got {type(ex).__name__}: {ex}") from ex
                logger.debug("Step %d (%s) failed as expected: %s", i, op, ex)
                result.failures.append((i, f"{type(ex).__name__}: {ex}"))
                continue
            if expected is not None:
                raise ValidationError(f"Step {i} ({op}): expected {expected}, but the step succeeded")
            if op == "settle":
                result.summaries.append(vault.summary())

    return result
