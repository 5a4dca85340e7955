"""
Wallet signers.

A signer exposes the wallet's public key and signs a batch of
transactions in one call. KeypairSigner signs locally with a keypair
loaded from a Solana CLI keypair file.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import SigningError


class BaseWalletSigner(ABC):
    """Interface every wallet signer implements."""

    @property
    @abstractmethod
    def pubkey(self) -> Pubkey:
        """The wallet's public key."""
        pass

    @abstractmethod
    def sign_all_transactions(
        self, transactions: List[VersionedTransaction]
    ) -> List[VersionedTransaction]:
        """
        Sign every transaction in the batch.

        Args:
            transactions: Unsigned transactions

        Returns:
            Signed transactions, in the same order

        Raises:
            SigningError: If any transaction cannot be signed
        """
        pass


class KeypairSigner(BaseWalletSigner):
    """Signs with a local keypair."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def sign_all_transactions(
        self, transactions: List[VersionedTransaction]
    ) -> List[VersionedTransaction]:
        signed: List[VersionedTransaction] = []
        for i, tx in enumerate(transactions):
            try:
                signed.append(VersionedTransaction(tx.message, [self.keypair]))
            except Exception as e:
                raise SigningError(f"Could not sign transaction {i}: {e}") from e
        return signed


def load_keypair(path: Path) -> Keypair:
    """
    Load a solana-keygen style keypair file.

    Supports:
      - JSON array of 64 ints (Solana CLI default)
      - JSON string holding the base58 encoded secret key

    Raises:
        ValueError: If the file does not hold a 64 byte keypair
    """
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)

    if isinstance(payload, list):
        raw = bytes(int(x) for x in payload)
        if len(raw) != 64:
            raise ValueError(f"Keypair must be 64 bytes (got {len(raw)}): {path}")
        return Keypair.from_bytes(raw)
    if isinstance(payload, str):
        return Keypair.from_base58_string(payload)
    raise ValueError(f"Unsupported keypair format: {path}")
