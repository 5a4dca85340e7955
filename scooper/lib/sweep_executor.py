"""
Sweep executor.

Turns approved assets into transactions (aggregator swaps, or account
closures for empty accounts), has the wallet sign them as one batch, and
submits every signed transaction independently.
"""

import asyncio
import sys
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .errors import SigningError
from .events import AssetFailed, StateChanged, SweepEvent, TransactionSent
from .models import Asset, SweepOutcome, SweepState, TokenBalance
from .quote_pipeline import DEFAULT_MAX_CONCURRENCY
from .rpc_client import SolanaRPCClient
from .signer import BaseWalletSigner


# SPL Token CloseAccount instruction index
CLOSE_ACCOUNT_IX = bytes([9])

SIGNING_FAILED = "Failed signing transactions!"


def build_close_account_ix(
    program_id: Pubkey,
    account: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
) -> Instruction:
    """CloseAccount instruction returning the account's rent to destination."""
    return Instruction(
        program_id=program_id,
        accounts=[
            AccountMeta(pubkey=account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        ],
        data=CLOSE_ACCOUNT_IX,
    )


def build_close_account_tx(
    balance: TokenBalance, wallet: Pubkey, blockhash: Hash
) -> VersionedTransaction:
    """Unsigned transaction closing an empty token account into the wallet."""
    ix = build_close_account_ix(
        Pubkey.from_string(balance.program_id),
        Pubkey.from_string(balance.account),
        destination=wallet,
        authority=wallet,
    )
    message = MessageV0.try_compile(wallet, [ix], [], blockhash)
    return VersionedTransaction.populate(message, [Signature.default()])


def apply_event(outcomes: Dict[str, SweepOutcome], event: SweepEvent) -> None:
    """Fold one sweep event into the per-asset outcomes."""
    if not event.asset_id:
        return
    outcome = outcomes.setdefault(event.asset_id, SweepOutcome(event.asset_id))
    if isinstance(event, StateChanged):
        outcome.advance(event.state)
    elif isinstance(event, TransactionSent):
        outcome.txid = event.txid
    elif isinstance(event, AssetFailed):
        outcome.error = event.reason


class SweepExecutor:
    """
    Signs and submits the transactions for a batch of approved assets.

    Per asset the state moves Pending -> Scooping -> Scooped or Error.
    A signing failure aborts the whole batch before anything is sent.
    """

    def __init__(
        self,
        signer: BaseWalletSigner,
        rpc: SolanaRPCClient,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        """
        Initialize the executor.

        Args:
            signer: Wallet signer for the batch
            rpc: Ledger connection for the blockhash and submission
            max_concurrency: Maximum number of submissions in flight at once
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.signer = signer
        self.rpc = rpc
        self.max_concurrency = max_concurrency

    def _build_transactions(
        self, assets: Sequence[Asset], blockhash: Hash
    ) -> Tuple[List[Tuple[str, VersionedTransaction]], List[AssetFailed]]:
        pending: List[Tuple[str, VersionedTransaction]] = []
        failures: List[AssetFailed] = []
        wallet = self.signer.pubkey

        for asset in assets:
            if not asset.approved:
                continue
            symbol = asset.balance.token.symbol or asset.key

            try:
                if asset.swap is not None:
                    tx = asset.swap.to_transaction()
                elif asset.needs_closure:
                    tx = build_close_account_tx(asset.balance, wallet, blockhash)
                else:
                    print(f"[sweep] Skipping {symbol}: no swap transaction", file=sys.stderr)
                    continue
            except Exception as e:
                print(f"[sweep] Could not build transaction for {symbol}: {e}", file=sys.stderr)
                failures.append(AssetFailed(asset.key, "build", str(e)))
                continue

            pending.append((asset.key, tx))

        return pending, failures

    async def stream(self, assets: Sequence[Asset]) -> AsyncIterator[SweepEvent]:
        """
        Sweep the approved assets and yield events as they happen.

        Raises:
            ValueError: If two assets share a key
        """
        keys = [asset.key for asset in assets]
        duplicates = sorted({key for key in keys if keys.count(key) > 1})
        if duplicates:
            raise ValueError(f"Duplicate assets in sweep batch: {', '.join(duplicates)}")

        # One blockhash for the whole batch, read-only from here on.
        blockhash = await asyncio.to_thread(self.rpc.get_latest_blockhash)

        pending, failures = self._build_transactions(assets, blockhash)
        for failure in failures:
            yield failure

        if not pending:
            print("[sweep] Nothing to sweep", file=sys.stderr)
            return

        try:
            signed = await asyncio.to_thread(
                self.signer.sign_all_transactions, [tx for _, tx in pending]
            )
            if len(signed) != len(pending):
                raise SigningError(
                    f"Signer returned {len(signed)} transactions for {len(pending)}"
                )
        except SigningError as e:
            print(f"[sweep] Error signing transactions: {e}", file=sys.stderr)
            yield AssetFailed("", "sign", SIGNING_FAILED)
            return

        queue: asyncio.Queue = asyncio.Queue()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._submit(asset_id, tx, queue, semaphore))
            for (asset_id, _), tx in zip(pending, signed)
        ]
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

    async def _submit(
        self,
        asset_id: str,
        tx: VersionedTransaction,
        queue: asyncio.Queue,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            queue.put_nowait(StateChanged(asset_id, SweepState.SCOOPING))
            try:
                txid = await asyncio.to_thread(self.rpc.send_and_confirm, bytes(tx))
            except Exception as e:
                print(f"[sweep] Transaction failed for {asset_id}: {e}", file=sys.stderr)
                queue.put_nowait(StateChanged(asset_id, SweepState.ERROR))
                queue.put_nowait(AssetFailed(asset_id, "submit", str(e)))
                return

            print(f"[sweep] Transaction confirmed for {asset_id}: {txid}", file=sys.stderr)
            queue.put_nowait(TransactionSent(asset_id, txid))
            queue.put_nowait(StateChanged(asset_id, SweepState.SCOOPED))

    async def run(
        self,
        assets: Sequence[Asset],
        on_event: Optional[Callable[[SweepEvent], None]] = None,
    ) -> Dict[str, SweepOutcome]:
        """
        Sweep the approved assets and collect the outcomes.

        Args:
            assets: Assets to sweep; only approved ones are considered
            on_event: Optional hook called with every event as it arrives

        Returns:
            SweepOutcome per asset that produced an event, keyed by mint address
        """
        outcomes: Dict[str, SweepOutcome] = {}
        async for event in self.stream(assets):
            if on_event is not None:
                on_event(event)
            apply_event(outcomes, event)
        return outcomes
