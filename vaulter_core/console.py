"""Console output formatting."""

from collections.abc import Sequence
from datetime import datetime, timezone

from vaulter_core.constants import REWARD_ASSET_TYPES, TOTAL_BASIS_POINTS
from vaulter_core.formatters import (
    format_bp,
    format_btc,
    format_core,
    format_price,
    format_ratio_pair,
    format_shares,
    short_hex,
)
from vaulter_core.models import DelegationInfo, StakePosition, VaultSummary
from vaulter_core.reports import backing_ratio_bp, summary_deltas, zero_summary


def _signed_core(value_wei: int) -> str:
    sign = "+" if value_wei > 0 else ""
    return f"{sign}{format_core(value_wei)}"


def print_summary(summary: VaultSummary, prev: VaultSummary | None = None) -> None:
    """Print one round's vault figures, with changes against `prev` when given."""
    deltas = summary_deltas(prev or zero_summary(), summary)
    print("=" * 70)
    print(f"📊 VAULT ROUND {summary.round}")
    print("=" * 70)
    print(f"   💰 Total assets:      {format_core(summary.total_assets_wei)}  ({_signed_core(deltas['total_assets_wei'])})")
    print(f"   🪙 Share supply:      {format_shares(summary.total_supply)}")
    print(f"   📈 Price per share:   {format_price(summary.price_per_share)}")
    print(f"   👥 Holders:           {summary.holders}")
    print("   " + "─" * 50)
    print(f"   ₿  BTC staked:        {format_btc(summary.total_cross_staked_sats)} in {summary.active_positions} position(s)")
    print(f"   🔒 CORE delegated:    {format_core(summary.total_reserve_staked_wei)}")
    print(f"   💵 Liquid CORE:       {format_core(summary.cash_wei)}")
    backing = backing_ratio_bp(summary)
    if backing is not None:
        backing_emoji = "🟢" if backing >= TOTAL_BASIS_POINTS else "🔴"
        print(f"   {backing_emoji} Backing:           {format_bp(backing)}")
    print("   " + "─" * 50)
    print("   🎁 Pending rewards:")
    print(f"      • BTC stakers:     {format_core(summary.pending_cross_rewards_wei)}")
    print(f"      • Depositors:      {format_core(summary.pending_reserve_rewards_wei)}")
    print(f"      • Protocol fees:   {format_core(summary.pending_protocol_fees_wei)}")
    if summary.unallocated_rewards_wei:
        print(f"      • Unallocated:     {format_core(summary.unallocated_rewards_wei)}")
    print(f"   ⚖️  Reward split:      {format_ratio_pair(summary.cross_ratio_bp)}")
    if prev is not None and prev.cross_ratio_bp != summary.cross_ratio_bp:
        print(f"      (was {format_ratio_pair(prev.cross_ratio_bp)})")
    print("")


def print_round_history(summaries: Sequence[VaultSummary]) -> None:
    prev = None
    for summary in summaries:
        print_summary(summary, prev)
        prev = summary


def print_positions(positions: Sequence[StakePosition], *, now: int) -> None:
    if not positions:
        print("   (no active BTC positions)")
        return
    print("₿  ACTIVE BTC POSITIONS")
    for p in positions:
        unlock = datetime.fromtimestamp(p.locktime, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        marker = "⌛" if now >= p.locktime else "  "
        print(f"{marker} {short_hex(p.tx_id)}  {format_btc(p.amount):>16}  owner {short_hex(p.owner_hash)}")
        print(f"   unlocks {unlock}  •  end round {p.end_round}")
    print("")


def print_delegations(delegator: str, rows: Sequence[DelegationInfo], pending_rewards: Sequence[int] | None = None) -> None:
    print("=" * 70)
    print(f"🔗 DELEGATIONS OF {delegator}")
    print("=" * 70)
    if not rows:
        print("   (no CORE delegations)")
    total_realtime = 0
    for row in rows:
        total_realtime += row.realtime_amount_wei
        print(f"   {row.candidate}")
        print(f"      • Staked:      {format_core(row.staked_amount_wei)}")
        print(f"      • Realtime:    {format_core(row.realtime_amount_wei)}")
        if row.transferred_amount_wei:
            print(f"      • Transferred: {format_core(row.transferred_amount_wei)}")
        print(f"      • Changed in round {row.change_round}")
    print(f"   Total (realtime): {format_core(total_realtime)}")
    if pending_rewards is not None:
        print("   🎁 Pending StakeHub rewards:")
        for i, reward in enumerate(pending_rewards):
            label = REWARD_ASSET_TYPES[i] if i < len(REWARD_ASSET_TYPES) else f"asset #{i}"
            print(f"      • {label + ':':<13}{format_core(reward)}")
        print(f"      • {'Total:':<13}{format_core(sum(pending_rewards))}")
    print("")
