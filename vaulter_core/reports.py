"""Vault summaries and round-over-round deltas."""

from typing import TYPE_CHECKING

from vaulter_core.constants import TOTAL_BASIS_POINTS
from vaulter_core.models import VaultSummary

if TYPE_CHECKING:
    from vaulter_core.vault import VaultState  # pragma: no cover


def summarize(state: "VaultState") -> VaultSummary:
    """Compute the global figures of a vault state."""
    return VaultSummary(
        round=state.current_round,
        total_assets_wei=state.total_reserve_deposits,
        total_supply=state.shares.total_supply,
        price_per_share=state.price_per_share(),
        total_cross_staked_sats=state.ledger.total_staked,
        total_reserve_staked_wei=state.total_reserve_staked,
        cash_wei=state.cash,
        pending_cross_rewards_wei=state.pending_cross_rewards,
        pending_reserve_rewards_wei=state.pending_reserve_rewards,
        pending_protocol_fees_wei=state.pending_protocol_fees,
        unallocated_rewards_wei=state.unallocated_rewards,
        cross_ratio_bp=state.cross_ratio_bp,
        reserve_ratio_bp=state.reserve_ratio_bp,
        active_positions=len(state.ledger.active),
        holders=len(state.shares.holders()),
    )


def zero_summary() -> VaultSummary:
    """Create a zero-initialized VaultSummary (baseline for the first round's deltas)."""
    return VaultSummary(
        round=0,
        total_assets_wei=0,
        total_supply=0,
        price_per_share=0,
        total_cross_staked_sats=0,
        total_reserve_staked_wei=0,
        cash_wei=0,
        pending_cross_rewards_wei=0,
        pending_reserve_rewards_wei=0,
        pending_protocol_fees_wei=0,
        unallocated_rewards_wei=0,
        cross_ratio_bp=0,
        reserve_ratio_bp=0,
        active_positions=0,
        holders=0,
    )


def summary_deltas(prev: VaultSummary, cur: VaultSummary) -> dict[str, int]:
    """Per-field change between two summaries, skipping the round number."""
    out: dict[str, int] = {}
    for name, value in cur.__dict__.items():
        if name == "round":
            continue
        out[name] = int(value) - int(getattr(prev, name))
    return out


def backing_ratio_bp(summary: VaultSummary) -> int | None:
    """Spendable plus delegated CORE relative to depositor assets, in basis points."""
    if summary.total_assets_wei == 0:
        return None
    backing = summary.cash_wei + summary.total_reserve_staked_wei
    backing -= summary.pending_protocol_fees_wei
    return backing * TOTAL_BASIS_POINTS // summary.total_assets_wei
