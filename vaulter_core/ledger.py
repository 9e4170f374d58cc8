"""Position ledger: verified BTC stake positions and their owner aggregates."""

import logging
from dataclasses import dataclass, field

from vaulter_core.bitcoin import extract_locktime_and_hash
from vaulter_core.constants import SECONDS_PER_ROUND
from vaulter_core.exceptions import (
    ConsistencyError,
    DuplicateStakeError,
    LocktimeMismatchError,
    UnknownDepositError,
)
from vaulter_core.formatters import short_hex
from vaulter_core.models import DelegationRecord, DepositRecord, StakeOwner, StakePosition

logger = logging.getLogger(__name__)


@dataclass
class PositionLedger:
    """
    Stake positions keyed by transaction id plus the index of positions still earning rewards.

    `active` order is not significant; removal swaps the last entry into the freed slot.
    """

    positions: dict[bytes, StakePosition] = field(default_factory=dict)
    active: list[bytes] = field(default_factory=list)
    owners: dict[bytes, StakeOwner] = field(default_factory=dict)
    total_staked: int = 0  # sats across active positions

    def ensure_unrecorded(self, tx_id: bytes) -> None:
        if tx_id in self.positions:
            raise DuplicateStakeError(f"BTC stake already recorded: {short_hex(tx_id)}")

    def record(
        self,
        tx_id: bytes,
        script: bytes,
        deposit: DepositRecord,
        delegation: DelegationRecord,
        *,
        vault_address: str,
    ) -> StakePosition:
        """Validate registry data against the script and insert a new active position."""
        self.ensure_unrecorded(tx_id)
        if deposit.amount <= 0:
            raise UnknownDepositError(f"BTC transaction not found in registry: {short_hex(tx_id)}")
        if str(delegation.target).lower() != vault_address.lower():
            raise ConsistencyError(
                f"BTC stake {short_hex(tx_id)} is delegated to {delegation.target}, not to this vault"
            )

        locktime, owner_hash = extract_locktime_and_hash(script)
        if locktime != deposit.locktime:
            raise LocktimeMismatchError(
                f"Script locktime {locktime} does not match registry locktime {deposit.locktime}"
            )

        position = StakePosition(
            tx_id=tx_id,
            amount=deposit.amount,
            locktime=locktime,
            deposit_timestamp=deposit.timestamp,
            end_round=delegation.round + locktime // SECONDS_PER_ROUND,
            owner_hash=owner_hash,
        )
        self.positions[tx_id] = position
        self.active.append(tx_id)
        owner = self.owners.setdefault(owner_hash, StakeOwner())
        owner.staked += position.amount
        self.total_staked += position.amount
        logger.info(
            "Recorded BTC stake %s: %d sats for %s (end round %d)",
            short_hex(tx_id),
            position.amount,
            short_hex(owner_hash),
            position.end_round,
        )
        return position

    def expire(self, tx_id: bytes) -> StakePosition:
        """
        Remove a position from the active index.

        The owner's cumulative `staked` figure is left untouched; only future reward
        distribution stops.
        """
        idx = self.active.index(tx_id)
        last = self.active.pop()
        if idx < len(self.active):
            self.active[idx] = last
        position = self.positions[tx_id]
        self.total_staked -= position.amount
        logger.info("Expired BTC stake %s (%d sats)", short_hex(tx_id), position.amount)
        return position

    def owner(self, owner_hash: bytes) -> StakeOwner:
        return self.owners.get(owner_hash, StakeOwner())

    def active_positions(self) -> list[StakePosition]:
        return [self.positions[tx_id] for tx_id in self.active]


def is_expired(position: StakePosition, now: int) -> bool:
    """A position expires once the wall clock reaches its absolute CLTV locktime."""
    return now >= position.locktime
