"""
Token account scanner.

Finds the token accounts owned by a wallet under both the SPL Token and
Token-2022 programs and keeps the ones whose mint is in the token
directory.
"""

import sys
from typing import Any, Dict, List

from .errors import LedgerConnectionError
from .models import TokenBalance, TokenDirectory
from .rpc_client import SolanaRPCClient


TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

# Account record sizes used to filter each program's token accounts
TOKEN_ACCOUNT_SIZE = 165
TOKEN_2022_ACCOUNT_SIZE = 182

# Offset of the owner field inside a token account
OWNER_OFFSET = 32

TOKEN_PROGRAMS = [
    (TOKEN_PROGRAM_ID, TOKEN_ACCOUNT_SIZE),
    (TOKEN_2022_PROGRAM_ID, TOKEN_2022_ACCOUNT_SIZE),
]


def owner_filters(wallet: str, data_size: int) -> List[Dict[str, Any]]:
    """getProgramAccounts filters selecting token accounts owned by wallet."""
    return [
        {"dataSize": data_size},
        {"memcmp": {"offset": OWNER_OFFSET, "bytes": wallet}},
    ]


class AccountScanner:
    """
    Scanner for a wallet's token balances.

    Only tokens present in the directory are returned; unknown mints are
    never swept.
    """

    def __init__(self, rpc: SolanaRPCClient):
        """
        Initialize the scanner.

        Args:
            rpc: Ledger connection used for account queries
        """
        self.rpc = rpc

    def scan(self, wallet: str, directory: TokenDirectory) -> List[TokenBalance]:
        """
        Scan a wallet for token balances matching the directory.

        Args:
            wallet: Wallet public key (base58)
            directory: Known tokens keyed by mint address

        Returns:
            TokenBalance per recognised token account, in no particular order

        Raises:
            LedgerConnectionError: If the ledger cannot be queried
        """
        accounts = []
        for program_id, data_size in TOKEN_PROGRAMS:
            for account in self.rpc.get_program_accounts(
                program_id, owner_filters(wallet, data_size)
            ):
                accounts.append((program_id, account))

        print(
            f"[scan] Found {len(accounts)} token account(s) for wallet {wallet}",
            file=sys.stderr,
        )

        balances: List[TokenBalance] = []
        for program_id, account in accounts:
            try:
                info = account["account"]["data"]["parsed"]["info"]
                mint = info["mint"]
                amount = int(info["tokenAmount"]["amount"])
                pubkey = account["pubkey"]
            except (KeyError, TypeError, ValueError) as e:
                raise LedgerConnectionError(f"Malformed token account record: {e}") from e

            token = directory.get(mint)
            if token is None:
                continue

            print(
                f"[scan] Recognised token {token.symbol or mint}, balance {amount}",
                file=sys.stderr,
            )
            balances.append(
                TokenBalance(
                    account=pubkey,
                    program_id=program_id,
                    token=token,
                    balance=amount,
                )
            )

        return balances
