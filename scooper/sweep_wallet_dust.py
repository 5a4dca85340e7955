#!/usr/bin/env python3
"""
Sweep a Solana wallet's dust balances into a single token.

This script finds the wallet's token accounts for known tokens, asks the
Jupiter aggregator for a quote and swap transaction per token, and (with
--execute) signs and submits the swaps. Empty token accounts are closed
to reclaim their rent. A CSV report is written to stdout.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from scooper.lib.account_scanner import AccountScanner
from scooper.lib.errors import APIError, LedgerConnectionError
from scooper.lib.events import (
    AssetFailed,
    AssetFound,
    QuoteFound,
    StateChanged,
    SwapFound,
    TransactionSent,
)
from scooper.lib.formatters import format_quantity, write_report
from scooper.lib.jupiter_client import DEFAULT_SLIPPAGE_BPS, WRAPPED_SOL_MINT, JupiterClient
from scooper.lib.models import Asset, SweepOutcome, SweepState, TokenDirectory
from scooper.lib.quote_pipeline import DEFAULT_MAX_CONCURRENCY, QuotePipeline, find_quotes
from scooper.lib.rpc_client import DEFAULT_RPC_URL, SolanaRPCClient
from scooper.lib.signer import KeypairSigner, load_keypair
from scooper.lib.sweep_executor import SweepExecutor


def log(label: str, message: str) -> None:
    """Log a message with a label prefix."""
    print(f"[{label}] {message}", file=sys.stderr)


def progress_logger(directory: TokenDirectory) -> Callable[[object], None]:
    """
    Build an event hook that logs pipeline and sweep progress per token.

    Args:
        directory: Token directory used to label events by symbol

    Returns:
        Callable accepting any pipeline or sweep event
    """

    def label(asset_id: str) -> str:
        if not asset_id:
            return "sweep"
        token = directory.get(asset_id)
        return token.symbol if token is not None and token.symbol else asset_id

    def on_event(event: object) -> None:
        if isinstance(event, AssetFound):
            token = event.balance.token
            quantity = format_quantity(event.balance.balance, token.decimals)
            log(label(event.asset_id), f"Found {quantity}")
        elif isinstance(event, QuoteFound):
            log(label(event.asset_id), f"Quote: {event.quote.out_amount} out")
        elif isinstance(event, SwapFound):
            log(label(event.asset_id), "Swap transaction ready")
        elif isinstance(event, StateChanged):
            log(label(event.asset_id), event.state.value)
        elif isinstance(event, TransactionSent):
            log(label(event.asset_id), f"Transaction {event.txid}")
        elif isinstance(event, AssetFailed):
            log(label(event.asset_id), f"ERROR ({event.stage}): {event.reason}")

    return on_event


def select_assets(
    assets: Iterable[Asset],
    target_mint: str,
    strict_only: bool = False,
    exclude: Sequence[str] = (),
) -> List[Asset]:
    """
    Approve the assets to sweep.

    An asset is approved when it has a swap transaction or an empty
    account, is not the target mint, is not excluded, and (with
    strict_only) is on the strict token list.

    Returns:
        The approved assets
    """
    excluded = set(exclude)
    selected: List[Asset] = []
    for asset in assets:
        asset.approved = (
            asset.key != target_mint
            and asset.key not in excluded
            and (asset.balance.token.strict or not strict_only)
            and (asset.swap is not None or asset.balance.balance == 0)
        )
        if asset.approved:
            selected.append(asset)
    return selected


def all_scooped(selected: Sequence[Asset], outcomes: Dict[str, SweepOutcome]) -> bool:
    """Whether every selected asset reached the Scooped state."""
    return all(
        asset.key in outcomes and outcomes[asset.key].state == SweepState.SCOOPED
        for asset in selected
    )


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = argparse.ArgumentParser(
        description="Sweep dust token balances from a Solana wallet into one token.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Quote everything, change nothing
  %(prog)s --keypair ~/.config/solana/id.json

  # Sweep strict-list tokens into USDC
  %(prog)s --keypair ~/.config/solana/id.json --strict-only \\
    --target-mint EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v --execute
        """,
    )

    parser.add_argument(
        "--keypair",
        required=True,
        help="Path to the wallet keypair file (Solana CLI JSON format)",
    )
    parser.add_argument(
        "--rpc-url",
        default=DEFAULT_RPC_URL,
        help=f"Solana RPC endpoint (default: {DEFAULT_RPC_URL})",
    )
    parser.add_argument(
        "--target-mint",
        default=WRAPPED_SOL_MINT,
        help="Mint to sweep into (default: wrapped SOL)",
    )
    parser.add_argument(
        "--slippage-bps",
        type=int,
        default=DEFAULT_SLIPPAGE_BPS,
        help=f"Slippage tolerance in basis points (default: {DEFAULT_SLIPPAGE_BPS})",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=DEFAULT_MAX_CONCURRENCY,
        help=f"Maximum concurrent aggregator/RPC requests (default: {DEFAULT_MAX_CONCURRENCY})",
    )
    parser.add_argument(
        "--strict-only",
        action="store_true",
        help="Only sweep tokens on the strict token list",
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=[],
        metavar="MINT",
        help="Mints to leave untouched",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Sign and submit transactions (default: dry run)",
    )

    parsed_args = parser.parse_args(args)

    if parsed_args.max_concurrency < 1:
        print("Error: --max-concurrency must be at least 1", file=sys.stderr)
        return 1

    try:
        keypair = load_keypair(Path(parsed_args.keypair).expanduser())
    except (OSError, ValueError) as e:
        print(f"Error: could not load keypair: {e}", file=sys.stderr)
        return 1

    signer = KeypairSigner(keypair)
    wallet = str(signer.pubkey)

    rpc = SolanaRPCClient(parsed_args.rpc_url)
    jupiter = JupiterClient(slippage_bps=parsed_args.slippage_bps)

    try:
        directory = jupiter.get_token_directory()
    except APIError as e:
        print(f"Error: could not load token directory: {e}", file=sys.stderr)
        return 1
    log("setup", f"Loaded {len(directory)} known tokens")

    on_event = progress_logger(directory)
    pipeline = QuotePipeline(
        jupiter,
        parsed_args.target_mint,
        wallet,
        max_concurrency=parsed_args.max_concurrency,
    )
    assets = asyncio.run(
        find_quotes(AccountScanner(rpc), pipeline, wallet, directory, on_event=on_event)
    )
    ordered = sorted(assets.values(), key=lambda a: (a.balance.token.symbol, a.key))

    selected = select_assets(
        ordered,
        parsed_args.target_mint,
        strict_only=parsed_args.strict_only,
        exclude=parsed_args.exclude,
    )
    log("setup", f"{len(selected)} of {len(ordered)} asset(s) selected for sweeping")

    if not parsed_args.execute or not selected:
        if not parsed_args.execute:
            log("setup", "DRY RUN: not signing or submitting any transactions")
        write_report(ordered, sys.stdout, directory=directory)
        return 0

    executor = SweepExecutor(signer, rpc, max_concurrency=parsed_args.max_concurrency)
    try:
        outcomes = asyncio.run(executor.run(selected, on_event=on_event))
    except (LedgerConnectionError, ValueError) as e:
        print(f"Error: sweep aborted: {e}", file=sys.stderr)
        write_report(ordered, sys.stdout, directory=directory)
        return 1

    write_report(ordered, sys.stdout, outcomes=outcomes, directory=directory)
    return 0 if all_scooped(selected, outcomes) else 1


if __name__ == "__main__":
    sys.exit(main())
