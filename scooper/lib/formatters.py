"""
Output formatters for dust sweep reports.

This module handles quantity formatting and the CSV report written to
stdout after quoting and sweeping.
"""

import csv
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, TextIO

from .models import REPORT_COLUMNS, Asset, SweepOutcome, TokenDirectory


def format_quantity(raw_balance: int, decimals: int) -> str:
    """
    Format balance with full precision, trimming trailing zeros.

    Args:
        raw_balance: Raw balance value (in smallest unit)
        decimals: Number of decimal places

    Returns:
        Formatted balance string with trailing zeros trimmed

    Examples:
        format_quantity(1000000, 6) -> "1"
        format_quantity(1500000, 6) -> "1.5"
        format_quantity(1234567890123456789, 18) -> "1.234567890123456789"
    """
    if raw_balance == 0:
        return "0"

    if decimals == 0:
        return str(raw_balance)

    balance = Decimal(raw_balance) / Decimal(10**decimals)
    formatted = format(balance, "f")

    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")

    return formatted


def report_row(
    asset: Asset,
    outcome: Optional[SweepOutcome] = None,
    directory: Optional[TokenDirectory] = None,
) -> List[str]:
    """
    Convert an asset and its sweep outcome to a CSV row.

    The expected output is formatted with the output token's decimals when
    the directory knows it, otherwise it is left in raw units.
    """
    token = asset.balance.token
    expected = ""
    if asset.quote is not None:
        output_token = (directory or {}).get(asset.quote.output_mint)
        if output_token is not None:
            expected = format_quantity(asset.quote.out_amount, output_token.decimals)
        else:
            expected = str(asset.quote.out_amount)

    state = ""
    txid = ""
    error = asset.error or ""
    if outcome is not None:
        state = outcome.state.value
        txid = outcome.txid or ""
        error = outcome.error or error

    return [
        token.symbol,
        token.address,
        format_quantity(asset.balance.balance, token.decimals),
        expected,
        "yes" if token.strict else "no",
        state,
        txid,
        error,
    ]


def write_report(
    assets: Sequence[Asset],
    stream: TextIO,
    outcomes: Optional[Dict[str, SweepOutcome]] = None,
    directory: Optional[TokenDirectory] = None,
) -> None:
    """
    Write a CSV report of assets (and sweep outcomes, if any) to a stream.

    Args:
        assets: Assets to report, in the order given
        stream: File-like object to write to
        outcomes: Sweep outcomes keyed by mint address
        directory: Token directory used to format expected output
    """
    writer = csv.writer(stream)
    writer.writerow(REPORT_COLUMNS)

    for asset in assets:
        outcome = (outcomes or {}).get(asset.key)
        writer.writerow(report_row(asset, outcome, directory))
