"""
Quote pipeline.

For every token balance, requests a quote into the target mint and then
the swap transaction for that quote. Assets are processed concurrently,
bounded by a semaphore, and each asset's failures stay with that asset.
Progress is published as an ordered stream of events.
"""

import asyncio
import sys
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence

from .account_scanner import AccountScanner
from .errors import LedgerConnectionError, QuoteError
from .events import AssetFailed, AssetFound, PipelineEvent, QuoteFound, SwapFound
from .jupiter_client import U64_MAX, JupiterClient
from .models import Asset, TokenBalance, TokenDirectory


DEFAULT_MAX_CONCURRENCY = 8


def quote_amount(balance: TokenBalance) -> int:
    """
    Amount to request a quote for, in raw units.

    Raises:
        QuoteError: If the balance does not fit the aggregator's u64 amount
    """
    if balance.balance > U64_MAX:
        raise QuoteError(f"Balance {balance.balance} exceeds the maximum quotable amount")
    return balance.balance


def apply_event(assets: Dict[str, Asset], event: PipelineEvent) -> None:
    """Fold one pipeline event into the asset records."""
    if isinstance(event, AssetFound):
        assets[event.asset_id] = Asset(balance=event.balance)
    elif isinstance(event, QuoteFound):
        assets[event.asset_id].quote = event.quote
    elif isinstance(event, SwapFound):
        assets[event.asset_id].swap = event.swap
    elif isinstance(event, AssetFailed):
        assets[event.asset_id].error = event.reason


class QuotePipeline:
    """
    Concurrent quote and swap lookup for a set of token balances.

    Within one asset the events are always AssetFound, then QuoteFound,
    then SwapFound; a failure ends that asset's branch with AssetFailed.
    There is no ordering between assets.
    """

    def __init__(
        self,
        aggregator: JupiterClient,
        output_mint: str,
        wallet_address: str,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        """
        Initialize the pipeline.

        Args:
            aggregator: Client used for quote and swap requests
            output_mint: Mint every asset is swapped into
            wallet_address: Wallet that will sign the swaps
            max_concurrency: Maximum number of assets in flight at once
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.aggregator = aggregator
        self.output_mint = output_mint
        self.wallet_address = wallet_address
        self.max_concurrency = max_concurrency

    async def stream(self, balances: Sequence[TokenBalance]) -> AsyncIterator[PipelineEvent]:
        """
        Process every balance and yield events as they happen.

        The iterator ends once every asset's branch has settled.
        """
        queue: asyncio.Queue = asyncio.Queue()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        seen = set()
        tasks: List[asyncio.Task] = []
        for balance in balances:
            asset_id = balance.token.address
            if asset_id in seen:
                print(
                    f"[quote] Skipping duplicate account {balance.account} for {asset_id}",
                    file=sys.stderr,
                )
                continue
            seen.add(asset_id)
            tasks.append(asyncio.create_task(self._process(balance, queue, semaphore)))

        closer = asyncio.create_task(self._close_when_done(tasks, queue))

        while True:
            event = await queue.get()
            if event is None:
                break
            yield event

        await closer

    async def _close_when_done(self, tasks: List[asyncio.Task], queue: asyncio.Queue) -> None:
        try:
            await asyncio.gather(*tasks)
        finally:
            queue.put_nowait(None)

    async def _process(
        self,
        balance: TokenBalance,
        queue: asyncio.Queue,
        semaphore: asyncio.Semaphore,
    ) -> None:
        asset_id = balance.token.address
        symbol = balance.token.symbol or asset_id

        queue.put_nowait(AssetFound(asset_id, balance))

        # Empty accounts are closure-only candidates; there is nothing to swap.
        if balance.balance == 0:
            return

        async with semaphore:
            try:
                amount = quote_amount(balance)
                quote = await asyncio.to_thread(
                    self.aggregator.get_quote, asset_id, self.output_mint, amount
                )
            except Exception as e:
                print(f"[quote] Failed to get quote for {symbol}: {e}", file=sys.stderr)
                queue.put_nowait(AssetFailed(asset_id, "quote", f"Couldn't get quote: {e}"))
                return

            queue.put_nowait(QuoteFound(asset_id, quote))

            try:
                swap = await asyncio.to_thread(
                    self.aggregator.get_swap, self.wallet_address, quote
                )
            except Exception as e:
                print(f"[quote] Failed to get swap for {symbol}: {e}", file=sys.stderr)
                queue.put_nowait(
                    AssetFailed(asset_id, "swap", f"Couldn't get swap transaction: {e}")
                )
                return

            queue.put_nowait(SwapFound(asset_id, swap))

    async def run(
        self,
        balances: Sequence[TokenBalance],
        on_event: Optional[Callable[[PipelineEvent], None]] = None,
    ) -> Dict[str, Asset]:
        """
        Process every balance and collect the results.

        Args:
            balances: Token balances to quote
            on_event: Optional hook called with every event as it arrives

        Returns:
            Asset records keyed by mint address
        """
        assets: Dict[str, Asset] = {}
        async for event in self.stream(balances):
            if on_event is not None:
                on_event(event)
            apply_event(assets, event)
        return assets


async def find_quotes(
    scanner: AccountScanner,
    pipeline: QuotePipeline,
    wallet: str,
    directory: TokenDirectory,
    on_event: Optional[Callable[[PipelineEvent], None]] = None,
) -> Dict[str, Asset]:
    """
    Scan a wallet and run the quote pipeline over what was found.

    A failed scan is logged and yields no assets, the same result as a
    wallet holding nothing sweepable.

    Returns:
        Asset records keyed by mint address
    """
    try:
        balances = await asyncio.to_thread(scanner.scan, wallet, directory)
    except LedgerConnectionError as e:
        print(f"[quote] Scan failed for wallet {wallet}: {e}", file=sys.stderr)
        return {}

    return await pipeline.run(balances, on_event)
