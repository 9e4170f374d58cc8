"""Interfaces of the external collaborators the vault depends on."""

from typing import Protocol

from vaulter_core.models import DelegationRecord, DepositRecord


class RewardOracle(Protocol):
    """Round counter and reward source (StakeHub)."""

    def current_round_number(self) -> int: ...

    def settle_and_return_rewards(self) -> list[int]:
        """Pay out the vault's accrued rewards. Mutating; called once per round."""
        ...


class DepositRegistry(Protocol):
    """Cross-chain BTC deposit registry (BitcoinStake). Read-only."""

    def lookup_deposit(self, tx_id: bytes) -> DepositRecord: ...

    def lookup_delegation(self, tx_id: bytes) -> DelegationRecord: ...


class DelegationAgent(Protocol):
    """CORE delegation to validator candidates (CoreAgent)."""

    def delegate(self, target: str, amount: int) -> None: ...

    def undelegate(self, target: str, amount: int) -> None: ...

    def list_delegation_targets(self, delegator: str) -> list[str]: ...

    def get_delegation(self, target: str, delegator: str) -> int: ...
