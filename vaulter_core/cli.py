"""CLI and main logic."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from vaulter_core.bitcoin import contains_subsequence, extract_locktime_and_hash, strip_witness, transaction_id
from vaulter_core.console import print_delegations, print_positions, print_round_history
from vaulter_core.constants import DEFAULT_RPC_URL_ENV, LOG_LEVEL_ENV
from vaulter_core.exceptions import VaultError
from vaulter_core.formatters import format_btc, hex_to_bytes, normalize_hex_str
from vaulter_core.simulation import run_scenario
from vaulter_core.validation import validate_vault_invariants

logger = logging.getLogger(__name__)

# Internal defaults (not exposed as CLI flags)
DEFAULT_TIMEOUT = 30


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(description="Dual-asset (CORE + BTC) yield vault accounting tools.")
    p.add_argument(
        "--log-level",
        default=os.getenv(LOG_LEVEL_ENV, "WARNING"),
        help=f"Logging level (DEBUG, INFO, WARNING, ...). Default: ${LOG_LEVEL_ENV} or WARNING.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run a JSON scenario against an in-memory vault.")
    sim.add_argument("scenario", type=Path, help="Scenario JSON file.")
    sim.add_argument("--no-progress", action="store_true", help="Hide the progress bar.")

    dlg = sub.add_parser("delegations", help="Show the CoreAgent delegations and pending rewards of a vault.")
    dlg.add_argument("vault", help="Vault (delegator) address.")
    dlg.add_argument(
        "--rpc-url",
        default=None,
        help=f"Core RPC URL. Required if {DEFAULT_RPC_URL_ENV} environment variable is not set.",
    )

    txid = sub.add_parser("txid", help="Compute the registry id of a BTC stake transaction.")
    txid.add_argument("raw_tx", help="Raw transaction hex (segwit or legacy).")
    txid.add_argument("--script", default=None, help="Locktime redeem script hex to check against the transaction.")
    txid.add_argument(
        "--rpc-url",
        default=None,
        help=f"Also look the id up in the BitcoinStake registry (or set {DEFAULT_RPC_URL_ENV} and pass --lookup).",
    )
    txid.add_argument("--lookup", action="store_true", help="Look the id up in the BitcoinStake registry.")
    txid.add_argument("--no-cache", action="store_true", help="Disable caching of registry lookups.")
    return p.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _connect(rpc_url: str | None):
    """Web3 connection or None (after printing the reason)."""
    from web3 import Web3

    rpc_url = rpc_url or os.getenv(DEFAULT_RPC_URL_ENV)
    if not rpc_url:
        print(
            f"Error: RPC URL is required. Provide --rpc-url or set {DEFAULT_RPC_URL_ENV} environment variable.",
            file=sys.stderr,
        )
        return None
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": DEFAULT_TIMEOUT}))
    if not w3.is_connected():
        print(f"Error: failed to connect to RPC at {rpc_url}", file=sys.stderr)
        return None
    return w3


def cmd_simulate(args: argparse.Namespace) -> int:
    try:
        scenario = json.loads(args.scenario.read_text(encoding="utf-8"))
    except (OSError, ValueError) as ex:
        print(f"Error: cannot read scenario {args.scenario}: {ex}", file=sys.stderr)
        return 2

    result = run_scenario(scenario, progress=not args.no_progress)
    vault = result.vault

    print_round_history(result.summaries)
    print_positions(vault.active_positions(), now=int(vault.clock()))
    for index, failure in result.failures:
        print(f"ℹ️  step {index} failed as expected: {failure}", file=sys.stderr)

    issues = validate_vault_invariants(vault.state, warn_only=True)
    if issues:
        print("⚠️  Vault invariant warnings:", file=sys.stderr)
        for issue in issues:
            print(f"   {issue}", file=sys.stderr)
        return 1
    return 0


def cmd_delegations(args: argparse.Namespace) -> int:
    from vaulter_core.onchain import Web3DelegationAgent, Web3RewardOracle, fetch_delegator_details

    w3 = _connect(args.rpc_url)
    if w3 is None:
        return 2

    agent = Web3DelegationAgent(w3, args.vault)
    rows = fetch_delegator_details(agent, agent.delegator)

    pending = None
    try:
        pending = Web3RewardOracle(w3, args.vault).settle_and_return_rewards()
    except Exception as ex:  # pylint: disable=broad-exception-caught
        print(f"⚠️  claimReward simulation failed for {args.vault}: {ex}", file=sys.stderr)

    print_delegations(agent.delegator, rows, pending)
    return 0


def cmd_txid(args: argparse.Namespace) -> int:
    try:
        raw = hex_to_bytes(args.raw_tx)
        script = hex_to_bytes(args.script) if args.script else None
    except ValueError as ex:
        print(f"Error: invalid hex input: {ex}", file=sys.stderr)
        return 2

    legacy = strip_witness(raw)
    tx_id = transaction_id(legacy)
    print(f"Transaction id:   {normalize_hex_str(tx_id)}")
    if legacy != raw:
        print(f"Legacy form:      {legacy.hex()}")

    if script is not None:
        locktime, pubkey_hash = extract_locktime_and_hash(script)
        print(f"Script locktime:  {locktime}")
        print(f"Public key hash:  {normalize_hex_str(pubkey_hash)}")
        if not contains_subsequence(legacy, script):
            print("⚠️  Transaction does not include the script", file=sys.stderr)
            return 1

    if args.lookup or args.rpc_url:
        from vaulter_core.onchain import Web3DepositRegistry

        w3 = _connect(args.rpc_url)
        if w3 is None:
            return 2
        registry = Web3DepositRegistry(w3, use_cache=not args.no_cache)
        deposit = registry.lookup_deposit(tx_id)
        if deposit.amount == 0:
            print("ℹ️  Not (yet) recorded by the BitcoinStake registry", file=sys.stderr)
            return 1
        delegation = registry.lookup_delegation(tx_id)
        print(f"Registry amount:  {format_btc(deposit.amount)}")
        print(f"Registry lock:    {deposit.locktime}")
        print(f"Delegated to:     {delegation.target} (round {delegation.round})")
    return 0


COMMANDS = {
    "simulate": cmd_simulate,
    "delegations": cmd_delegations,
    "txid": cmd_txid,
}


def main(argv: list[str]) -> int:
    """Main entry point."""
    args = parse_args(argv)
    _configure_logging(args.log_level)
    try:
        return COMMANDS[args.command](args)
    except VaultError as ex:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {ex}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
