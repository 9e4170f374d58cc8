"""
Dual-asset vault: share accounting, BTC position tracking and reward rebalancing.

`Vault` owns a single `VaultState`. Every mutating entry point runs inside
`Vault._operation`, which rejects re-entry and restores the state snapshot if anything
raises, so a failed operation never leaves shares, pools or the position index partially
updated.
"""

import copy
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from vaulter_core.bitcoin import (
    contains_subsequence,
    derive_external_hash,
    transaction_id,
    verify_ownership,
)
from vaulter_core.constants import PRICE_SCALE, TOTAL_BASIS_POINTS
from vaulter_core.exceptions import (
    AuthorizationError,
    ConsistencyError,
    DelegationError,
    ExternalCallError,
    InsufficientFundsError,
    InvalidSignatureError,
    PausedError,
    ReentrancyError,
    RoundNotReadyError,
    ValidationError,
    VaultError,
    WithdrawalLockedError,
)
from vaulter_core.formatters import normalize_hex_str, short_hex
from vaulter_core.interfaces import DelegationAgent, DepositRegistry, RewardOracle
from vaulter_core.ledger import PositionLedger, is_expired
from vaulter_core.models import (
    Depositor,
    GradeInterval,
    SettlementResult,
    StakeOwner,
    StakePosition,
    VaultConfig,
    VaultEvent,
    VaultSummary,
)
from vaulter_core.rewards import (
    compute_cross_ratio,
    cross_reward_pool,
    position_share,
    required_reserve_stake,
    reserve_reward_pool,
    split_fee,
)
from vaulter_core.reports import summarize
from vaulter_core.shares import ShareLedger
from vaulter_core.validation import (
    validate_fee_rate,
    validate_grade,
    validate_grade_table,
    validate_reserve_ratio,
    validate_reward_ratio,
    validate_target_ratio,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class VaultState:
    """All mutable vault bookkeeping. Snapshotted as a whole for rollback."""

    shares: ShareLedger = field(default_factory=ShareLedger)
    ledger: PositionLedger = field(default_factory=PositionLedger)
    depositors: dict[str, Depositor] = field(default_factory=dict)
    # CORE attributed to depositors (deposits + claimed rewards - withdrawals).
    total_reserve_deposits: int = 0
    total_reserve_staked: int = 0
    # CORE physically held by the vault, including unclaimed pools.
    cash: int = 0
    pending_cross_rewards: int = 0
    pending_reserve_rewards: int = 0
    pending_protocol_fees: int = 0
    # BTC reward share of rounds without active positions, plus rounding dust.
    unallocated_rewards: int = 0
    current_round: int = 0
    cross_ratio_bp: int = 0
    grades: list[GradeInterval] = field(default_factory=list)
    fee_rate_bp: int = 0
    target_ratio: int = 0
    reserve_ratio_percent: int = 0
    min_cross_stake_sats: int = 0
    min_reserve_deposits_wei: int = 0
    paused: bool = False
    events: list[VaultEvent] = field(default_factory=list)

    @property
    def reserve_ratio_bp(self) -> int:
        return TOTAL_BASIS_POINTS - self.cross_ratio_bp

    def price_per_share(self) -> int:
        supply = self.shares.total_supply
        if supply == 0:
            return PRICE_SCALE
        return self.total_reserve_deposits * PRICE_SCALE // supply


class Vault:
    """
    The vault service.

    `owner` holds the admin/operator capability: recording stakes, settling rounds,
    delegating CORE and governance. Deposits, withdrawals and claims are open to anyone and
    blocked while paused.
    """

    def __init__(
        self,
        address: str,
        owner: str,
        oracle: RewardOracle,
        registry: DepositRegistry,
        agent: DelegationAgent,
        *,
        config: VaultConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or VaultConfig()
        validate_fee_rate(config.fee_rate_bp)
        validate_reward_ratio(config.cross_reward_ratio_bp)
        validate_target_ratio(config.target_ratio)
        validate_reserve_ratio(config.reserve_ratio_percent)
        grades = [GradeInterval(lower, upper, ratio) for lower, upper, ratio in config.grade_table]
        for slot, grade in enumerate(grades):
            validate_grade(slot, grade)
        validate_grade_table(grades, warn_only=False)

        self.address = address
        self.owner = owner
        self.oracle = oracle
        self.registry = registry
        self.agent = agent
        self.clock = clock
        self._entered = False
        self.state = VaultState(
            cross_ratio_bp=config.cross_reward_ratio_bp,
            grades=grades,
            fee_rate_bp=config.fee_rate_bp,
            target_ratio=config.target_ratio,
            reserve_ratio_percent=config.reserve_ratio_percent,
            min_cross_stake_sats=config.min_cross_stake_sats,
            min_reserve_deposits_wei=config.min_reserve_deposits_wei,
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        if self._entered:
            raise ReentrancyError(f"{name}: vault re-entered during another operation")
        self._entered = True
        events = self.state.events
        mark = len(events)
        # events are append-only, so the snapshot shares the list and rollback truncates it
        snapshot = copy.deepcopy(self.state, {id(events): events})
        try:
            yield
        except Exception as ex:
            del events[mark:]
            self.state = snapshot
            logger.warning("%s reverted: %s", name, ex)
            raise
        finally:
            self._entered = False

    def _call(
        self,
        what: str,
        fn: Callable[..., T],
        *args: Any,
        error_cls: type[ExternalCallError] = ExternalCallError,
    ) -> T:
        """Invoke an external collaborator, converting its failures into vault errors."""
        try:
            return fn(*args)
        except VaultError:
            raise
        except Exception as ex:  # pylint: disable=broad-exception-caught
            reason = str(ex) or f"{what} failed"
            raise error_cls(reason) from ex

    def _emit(self, event: str, **args: Any) -> None:
        self.state.events.append(VaultEvent(name=event, round=self.state.current_round, args=args))

    def _require_owner(self, caller: str) -> None:
        if caller.lower() != self.owner.lower():
            raise AuthorizationError(f"{caller} is not the vault owner")

    def _require_active(self) -> None:
        if self.state.paused:
            raise PausedError("Vault is paused")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def current_round(self) -> int:
        return self.state.current_round

    @property
    def events(self) -> list[VaultEvent]:
        return list(self.state.events)

    def total_assets(self) -> int:
        return self.state.total_reserve_deposits

    def total_supply(self) -> int:
        return self.state.shares.total_supply

    def balance_of(self, holder: str) -> int:
        return self.state.shares.balance_of(holder)

    def price_per_share(self) -> int:
        return self.state.price_per_share()

    def convert_to_shares(self, assets: int) -> int:
        price = self.price_per_share()
        if price == 0:
            raise InsufficientFundsError("Vault shares are not backed by any assets")
        return assets * PRICE_SCALE // price

    def convert_to_assets(self, shares: int) -> int:
        return shares * self.price_per_share() // PRICE_SCALE

    def reward_ratios(self) -> tuple[int, int]:
        """(BTC reward ratio, CORE reward ratio) in basis points."""
        return self.state.cross_ratio_bp, self.state.reserve_ratio_bp

    def grade_table(self) -> list[GradeInterval]:
        return list(self.state.grades)

    def position(self, tx_id: bytes) -> StakePosition | None:
        return self.state.ledger.positions.get(tx_id)

    def stake_owner(self, owner_hash: bytes) -> StakeOwner:
        return self.state.ledger.owner(owner_hash)

    def active_positions(self) -> list[StakePosition]:
        return self.state.ledger.active_positions()

    def summary(self) -> VaultSummary:
        return summarize(self.state)

    # ------------------------------------------------------------------
    # Share accounting
    # ------------------------------------------------------------------

    def deposit(self, caller: str, amount: int) -> int:
        """Deposit CORE and mint shares at the current price. Returns shares minted."""
        with self._operation("deposit"):
            self._require_active()
            if amount <= 0:
                raise ValidationError("Deposit amount must be > 0")
            shares = self.convert_to_shares(amount)
            st = self.state
            st.shares.mint(caller, shares)
            st.depositors.setdefault(caller, Depositor()).deposit_round = st.current_round
            st.total_reserve_deposits += amount
            st.cash += amount
            self._emit("Deposited", holder=caller, amount=amount, shares=shares)
            logger.info("Deposit of %d wei by %s minted %d shares", amount, caller, shares)
            return shares

    def claim_rewards(self, caller: str) -> int:
        """Mint the caller's pro-rata slice of pending CORE rewards as shares."""
        with self._operation("claim_rewards"):
            self._require_active()
            return self._claim_rewards(caller)

    def _claim_rewards(self, holder: str) -> int:
        st = self.state
        depositor = st.depositors.setdefault(holder, Depositor(deposit_round=-1))
        if depositor.last_claim_round == st.current_round:
            return 0
        depositor.last_claim_round = st.current_round

        assets = self.convert_to_assets(st.shares.balance_of(holder))
        if st.total_reserve_deposits == 0:
            return 0
        reward = assets * st.pending_reserve_rewards // st.total_reserve_deposits
        if reward <= 0:
            return 0
        shares = self.convert_to_shares(reward)
        st.pending_reserve_rewards -= reward
        st.shares.mint(holder, shares)
        st.total_reserve_deposits += reward
        self._emit("RewardsClaimed", holder=holder, reward=reward, shares=shares)
        logger.info("Claimed %d wei CORE rewards for %s as %d shares", reward, holder, shares)
        return shares

    def withdraw(self, caller: str, shares: int) -> int:
        """
        Burn `shares` and pay out their CORE value. Returns the amount paid.

        Locked until the round after the caller's last deposit. Pending rewards are claimed
        first; missing liquidity is recovered by undelegating CORE.
        """
        with self._operation("withdraw"):
            self._require_active()
            st = self.state
            if shares <= 0:
                raise ValidationError("Withdraw amount must be > 0")
            balance = st.shares.balance_of(caller)
            if shares > balance:
                raise InsufficientFundsError(f"Withdraw of {shares} shares exceeds balance {balance}")
            depositor = st.depositors.get(caller)
            if depositor is not None and st.current_round <= depositor.deposit_round:
                raise WithdrawalLockedError("Withdrawal locked for this round")

            self._claim_rewards(caller)
            assets = self.convert_to_assets(shares)
            if assets > self.state.cash:
                self._unstake(assets - self.state.cash)

            st = self.state
            st.total_reserve_deposits -= assets
            st.shares.burn(caller, shares)
            st.cash -= assets
            self._emit("Withdrawn", holder=caller, shares=shares, amount=assets)
            logger.info("Withdrawal of %d shares by %s paid %d wei", shares, caller, assets)
            return assets

    def transfer_shares(self, caller: str, recipient: str, shares: int) -> None:
        with self._operation("transfer_shares"):
            self._require_active()
            st = self.state
            st.shares.transfer(caller, recipient, shares)
            sender = st.depositors.get(caller)
            if sender is not None:
                # shares carry the round lock of the sender
                receiver = st.depositors.setdefault(recipient, Depositor(deposit_round=-1))
                receiver.deposit_round = max(receiver.deposit_round, sender.deposit_round)
            self._emit("Transfer", sender=caller, recipient=recipient, shares=shares)

    # ------------------------------------------------------------------
    # BTC positions
    # ------------------------------------------------------------------

    def record_stake(self, caller: str, raw_tx: bytes, script: bytes) -> StakePosition:
        """Verify a BTC stake delegated to this vault and start tracking it."""
        with self._operation("record_stake"):
            self._require_owner(caller)
            raw_tx, script = bytes(raw_tx), bytes(script)
            if not contains_subsequence(raw_tx, script):
                raise ConsistencyError("BTC transaction does not include provided script")
            tx_id = transaction_id(raw_tx)
            ledger = self.state.ledger
            ledger.ensure_unrecorded(tx_id)

            deposit = self._call("lookup_deposit", self.registry.lookup_deposit, tx_id)
            delegation = self._call("lookup_delegation", self.registry.lookup_delegation, tx_id)
            position = ledger.record(tx_id, script, deposit, delegation, vault_address=self.address)
            self._emit(
                "StakeRecorded",
                tx_id=normalize_hex_str(tx_id),
                pubkey_hash=normalize_hex_str(position.owner_hash),
                amount=position.amount,
                end_round=position.end_round,
            )
            return position

    # ------------------------------------------------------------------
    # Round settlement
    # ------------------------------------------------------------------

    def settle_round(self, caller: str) -> SettlementResult:
        """
        Pull the elapsed round's rewards, distribute them and rebalance the reward split.

        Each position is credited before expired ones are removed, so a position still earns
        the round in which its locktime passes.
        """
        with self._operation("settle_round"):
            self._require_owner(caller)
            oracle_round = int(self._call("current_round_number", self.oracle.current_round_number))
            if oracle_round <= self.state.current_round:
                raise RoundNotReadyError(
                    f"Round {oracle_round} already settled (vault is at round {self.state.current_round})"
                )
            rewards = self._call("settle_and_return_rewards", self.oracle.settle_and_return_rewards)
            amounts = [int(r) for r in rewards]
            if any(r < 0 for r in amounts):
                raise ExternalCallError(f"Reward oracle returned a negative reward: {amounts}")
            gross = sum(amounts)

            st = self.state
            st.cash += gross
            fee, net = split_fee(gross, st.fee_rate_bp) if gross > 0 else (0, 0)
            st.pending_protocol_fees += fee

            ledger = st.ledger
            cross_pool = cross_reward_pool(net, st.cross_ratio_bp)
            total_staked = ledger.total_staked
            now = int(self.clock())
            distributed = 0
            expired: list[bytes] = []
            for tx_id in reversed(ledger.active):
                position = ledger.positions[tx_id]
                share = position_share(cross_pool, position.amount, total_staked)
                if share:
                    ledger.owners[position.owner_hash].pending_rewards += share
                    distributed += share
                if is_expired(position, now):
                    expired.append(tx_id)
            st.pending_cross_rewards += distributed

            for tx_id in expired:
                position = ledger.expire(tx_id)
                self._emit("ExpiredStakeRemoved", tx_id=normalize_hex_str(tx_id), amount=position.amount)

            reserve_pool = reserve_reward_pool(net, st.reserve_ratio_bp)
            st.pending_reserve_rewards += reserve_pool
            st.unallocated_rewards += net - distributed - reserve_pool

            self._rebalance()
            st.current_round = oracle_round
            self._emit("RoundSettled", gross=gross, fee=fee, cross=distributed, reserve=reserve_pool)
            logger.info(
                "Settled round %d: gross=%d fee=%d btc=%d core=%d expired=%d",
                oracle_round,
                gross,
                fee,
                distributed,
                reserve_pool,
                len(expired),
            )
            return SettlementResult(
                round=oracle_round,
                gross_reward_wei=gross,
                fee_wei=fee,
                net_reward_wei=net,
                cross_reward_wei=distributed,
                reserve_reward_wei=reserve_pool,
                expired=tuple(expired),
                cross_ratio_bp=st.cross_ratio_bp,
            )

    def _rebalance(self) -> None:
        st = self.state
        ratio, deviation = compute_cross_ratio(
            st.ledger.total_staked,
            st.total_reserve_deposits,
            target_ratio=st.target_ratio,
            reserve_ratio_percent=st.reserve_ratio_percent,
            grades=st.grades,
            min_cross_sats=st.min_cross_stake_sats,
            min_reserve_wei=st.min_reserve_deposits_wei,
        )
        if ratio != st.cross_ratio_bp:
            logger.info("Reward split rebalanced: BTC %d -> %d bp (deviation=%s)", st.cross_ratio_bp, ratio, deviation)
        st.cross_ratio_bp = ratio
        self._emit("RatiosRebalanced", cross_ratio_bp=ratio, reserve_ratio_bp=st.reserve_ratio_bp, deviation=deviation)

    # ------------------------------------------------------------------
    # CORE delegation
    # ------------------------------------------------------------------

    def stake_reserve(self, caller: str, target: str, amount: int) -> int:
        """
        Delegate CORE to `target`, but only as much as the BTC stake requires.

        Returns the amount actually delegated (0 when the requirement is already met).
        """
        with self._operation("stake_reserve"):
            self._require_owner(caller)
            if amount <= 0:
                raise ValidationError("Stake amount must be > 0")
            st = self.state
            required = required_reserve_stake(st.ledger.total_staked, st.target_ratio)
            needed = max(0, required - st.total_reserve_staked)
            to_stake = min(amount, needed)
            if to_stake == 0:
                logger.info("No CORE stake needed (staked=%d, required=%d)", st.total_reserve_staked, required)
                return 0
            if to_stake > st.cash:
                raise InsufficientFundsError(f"Insufficient balance to stake {to_stake} wei (have {st.cash})")

            st.cash -= to_stake
            st.total_reserve_staked += to_stake
            self._emit("ReserveStaked", target=target, amount=to_stake)
            self._call("delegate", self.agent.delegate, target, to_stake, error_cls=DelegationError)
            logger.info("Delegated %d wei CORE to %s", to_stake, target)
            return to_stake

    def unstake_reserve(self, caller: str, amount: int) -> None:
        with self._operation("unstake_reserve"):
            self._require_owner(caller)
            if amount <= 0:
                raise ValidationError("Unstake amount must be > 0")
            self._unstake(amount)

    def _unstake(self, amount: int) -> None:
        """Undelegate `amount` across delegation targets; all or nothing."""
        targets = self._call("list_delegation_targets", self.agent.list_delegation_targets, self.address)
        available: list[tuple[str, int]] = []
        for target in targets:
            delegated = int(self._call("get_delegation", self.agent.get_delegation, target, self.address))
            available.append((target, delegated))
        total_available = sum(a for _, a in available)
        if total_available < amount:
            raise InsufficientFundsError(f"Insufficient delegated CORE to unstake {amount} wei (have {total_available})")

        st = self.state
        if amount > st.total_reserve_staked:
            logger.warning(
                "Undelegating %d wei but only %d wei is booked as staked; delegations drifted from the ledger",
                amount,
                st.total_reserve_staked,
            )
        st.total_reserve_staked = max(0, st.total_reserve_staked - amount)
        st.cash += amount
        remaining = amount
        for target, delegated in available:
            if remaining == 0:
                break
            take = min(delegated, remaining)
            if take == 0:
                continue
            self._call("undelegate", self.agent.undelegate, target, take, error_cls=DelegationError)
            self._emit("ReserveUnstaked", target=target, amount=take)
            remaining -= take
        logger.info("Undelegated %d wei CORE", amount)

    # ------------------------------------------------------------------
    # BTC reward claims
    # ------------------------------------------------------------------

    def claim_cross_asset_reward(self, native_pubkey: bytes, signature: bytes, message: str, recipient: str) -> int:
        """
        Claim the pending BTC-side rewards of the key's BTC public key hash into `recipient`.

        Anyone may submit the claim; the signature binds it to `recipient`. Returns shares minted.
        """
        with self._operation("claim_cross_asset_reward"):
            self._require_active()
            if not verify_ownership(message, signature, native_pubkey, recipient):
                raise InvalidSignatureError("Signature does not match the supplied public key")
            owner_hash = derive_external_hash(native_pubkey)
            st = self.state
            owner = st.ledger.owners.get(owner_hash)
            if owner is None or owner.staked == 0:
                raise ConsistencyError(f"No BTC stake recorded for {short_hex(owner_hash)}")
            reward = owner.pending_rewards
            if reward == 0:
                raise InsufficientFundsError(f"No pending BTC rewards for {short_hex(owner_hash)}")
            if reward > st.pending_cross_rewards:
                raise InsufficientFundsError("BTC reward pool cannot cover the pending reward")

            shares = self.convert_to_shares(reward)
            owner.pending_rewards = 0
            st.pending_cross_rewards -= reward
            st.shares.mint(recipient, shares)
            st.total_reserve_deposits += reward
            self._emit(
                "CrossRewardClaimed",
                pubkey_hash=normalize_hex_str(owner_hash),
                recipient=recipient,
                reward=reward,
                shares=shares,
            )
            logger.info("BTC rewards of %s (%d wei) minted as %d shares to %s", short_hex(owner_hash), reward, shares, recipient)
            return shares

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    def withdraw_protocol_fees(self, caller: str, amount: int | None = None) -> int:
        """Drain accrued protocol fees to the owner. Returns the amount paid."""
        with self._operation("withdraw_protocol_fees"):
            self._require_owner(caller)
            st = self.state
            amount = st.pending_protocol_fees if amount is None else amount
            if amount <= 0:
                raise ValidationError("No protocol fees to withdraw")
            if amount > st.pending_protocol_fees:
                raise InsufficientFundsError(
                    f"Requested {amount} wei exceeds pending protocol fees {st.pending_protocol_fees}"
                )
            if amount > st.cash:
                self._unstake(amount - st.cash)
            st = self.state
            st.pending_protocol_fees -= amount
            st.cash -= amount
            self._emit("ProtocolFeesWithdrawn", recipient=caller, amount=amount)
            return amount

    def _set_parameter(self, caller: str, name: str, value: Any, validator: Callable[[Any], None]) -> None:
        with self._operation(f"set_{name}"):
            self._require_owner(caller)
            validator(value)
            old = getattr(self.state, name)
            setattr(self.state, name, value)
            self._emit("ParameterChanged", name=name, old=old, new=value)
            logger.info("Parameter %s changed: %s -> %s", name, old, value)

    def set_fee_rate(self, caller: str, fee_rate_bp: int) -> None:
        self._set_parameter(caller, "fee_rate_bp", fee_rate_bp, validate_fee_rate)

    def set_reserve_ratio(self, caller: str, reserve_ratio_percent: int) -> None:
        self._set_parameter(caller, "reserve_ratio_percent", reserve_ratio_percent, validate_reserve_ratio)

    def set_target_ratio(self, caller: str, target_ratio: int) -> None:
        self._set_parameter(caller, "target_ratio", target_ratio, validate_target_ratio)

    def set_grade(self, caller: str, slot: int, lower: int, upper: int, cross_ratio_bp: int) -> None:
        with self._operation("set_grade"):
            self._require_owner(caller)
            grade = GradeInterval(lower, upper, cross_ratio_bp)
            validate_grade(slot, grade)
            self.state.grades[slot] = grade
            self._emit("ParameterChanged", name=f"grade[{slot}]", new=(lower, upper, cross_ratio_bp))
            for issue in validate_grade_table(self.state.grades):
                logger.warning("Grade table: %s", issue)

    def pause(self, caller: str) -> None:
        self._set_parameter(caller, "paused", True, lambda _: None)

    def unpause(self, caller: str) -> None:
        self._set_parameter(caller, "paused", False, lambda _: None)
