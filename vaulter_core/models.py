"""Data models for the dual-asset vault."""

from dataclasses import dataclass, field
from typing import Any

from vaulter_core.constants import (
    DEFAULT_CROSS_REWARD_RATIO_BP,
    DEFAULT_FEE_RATE_BP,
    DEFAULT_GRADE_TABLE,
    DEFAULT_RESERVE_RATIO_PERCENT,
    DEFAULT_TARGET_RATIO,
    MIN_CROSS_STAKE_SATS,
    MIN_RESERVE_DEPOSITS_WEI,
)


@dataclass(frozen=True)
class DepositRecord:
    """BTC deposit as verified by the deposit registry."""

    amount: int  # sats; 0 means unknown
    locktime: int
    timestamp: int


@dataclass(frozen=True)
class DelegationRecord:
    """Delegation receipt of a BTC deposit."""

    target: str  # address the stake is delegated to
    owner: str
    round: int


@dataclass(frozen=True)
class StakePosition:
    """A single verified BTC stake, keyed by its transaction id."""

    tx_id: bytes
    amount: int  # sats
    locktime: int  # absolute unix timestamp from the CLTV script
    deposit_timestamp: int
    # Fixed at creation, never revised.
    end_round: int
    owner_hash: bytes  # 20-byte BTC public key hash


@dataclass
class StakeOwner:
    """Aggregate of all positions sharing one public key hash. Never deleted."""

    staked: int = 0  # cumulative sats, not reduced on expiry
    pending_rewards: int = 0  # wei


@dataclass
class Depositor:
    """Per-holder round bookkeeping; the share balance lives in the share ledger."""

    deposit_round: int = 0
    last_claim_round: int = -1


@dataclass(frozen=True)
class GradeInterval:
    """Half-open deviation interval [lower, upper) mapped to a BTC reward ratio."""

    lower: int
    upper: int
    cross_ratio_bp: int

    def contains(self, deviation: int) -> bool:
        return self.lower <= deviation < self.upper


@dataclass(frozen=True)
class VaultEvent:
    """Notification emitted by a vault operation."""

    name: str
    round: int
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of one reward round settlement."""

    round: int
    gross_reward_wei: int
    fee_wei: int
    net_reward_wei: int
    cross_reward_wei: int
    reserve_reward_wei: int
    expired: tuple[bytes, ...]
    cross_ratio_bp: int  # ratio in force after rebalancing


@dataclass(frozen=True)
class VaultSummary:
    """Point-in-time view of the vault's global figures."""

    round: int
    total_assets_wei: int
    total_supply: int
    price_per_share: int
    total_cross_staked_sats: int
    total_reserve_staked_wei: int
    cash_wei: int
    pending_cross_rewards_wei: int
    pending_reserve_rewards_wei: int
    pending_protocol_fees_wei: int
    unallocated_rewards_wei: int
    cross_ratio_bp: int
    reserve_ratio_bp: int
    active_positions: int
    holders: int


@dataclass(frozen=True)
class VaultConfig:
    """Initial governance parameters of a vault."""

    fee_rate_bp: int = DEFAULT_FEE_RATE_BP
    cross_reward_ratio_bp: int = DEFAULT_CROSS_REWARD_RATIO_BP
    target_ratio: int = DEFAULT_TARGET_RATIO
    reserve_ratio_percent: int = DEFAULT_RESERVE_RATIO_PERCENT
    min_cross_stake_sats: int = MIN_CROSS_STAKE_SATS
    min_reserve_deposits_wei: int = MIN_RESERVE_DEPOSITS_WEI
    grade_table: tuple[tuple[int, int, int], ...] = DEFAULT_GRADE_TABLE


@dataclass(frozen=True)
class DelegationInfo:
    """CoreAgent delegation of one delegator to one validator candidate."""

    candidate: str
    staked_amount_wei: int  # effective from the current round
    realtime_amount_wei: int  # including delegations made this round
    transferred_amount_wei: int
    change_round: int
