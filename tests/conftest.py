"""
Pytest configuration and shared fixtures for dust scooper tests.
"""

import base64

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from scooper.lib.account_scanner import TOKEN_PROGRAM_ID
from scooper.lib.models import Quote, SwapPayload, TokenBalance, TokenInfo

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
WSOL_MINT = "So11111111111111111111111111111111111111112"


@pytest.fixture
def wallet_keypair():
    """Throwaway wallet keypair."""
    return Keypair()


@pytest.fixture
def sample_solana_address():
    """Sample Solana wallet address for testing."""
    return "GKvqsuNcnwWqPzzuhLmGi4rzzh55FhJtGizkhHaEJqiV"


@pytest.fixture
def usdc_token():
    return TokenInfo(
        address=USDC_MINT,
        decimals=6,
        name="USD Coin",
        symbol="USDC",
        tags=("old-registry",),
        strict=True,
    )


@pytest.fixture
def bonk_token():
    return TokenInfo(address=BONK_MINT, decimals=5, name="Bonk", symbol="Bonk")


@pytest.fixture
def wsol_token():
    return TokenInfo(address=WSOL_MINT, decimals=9, name="Wrapped SOL", symbol="SOL", strict=True)


@pytest.fixture
def token_directory(usdc_token, bonk_token, wsol_token):
    """Directory holding USDC, Bonk and wrapped SOL."""
    return {token.address: token for token in (usdc_token, bonk_token, wsol_token)}


@pytest.fixture
def make_balance():
    """Factory for TokenBalance records with a fresh token account address."""

    def _make(token, balance, program_id=TOKEN_PROGRAM_ID):
        return TokenBalance(
            account=str(Pubkey.new_unique()),
            program_id=program_id,
            token=token,
            balance=balance,
        )

    return _make


@pytest.fixture
def make_quote():
    """Factory for Quote records into wrapped SOL."""

    def _make(input_mint, in_amount, out_amount=1000):
        raw = {
            "inputMint": input_mint,
            "outputMint": WSOL_MINT,
            "inAmount": str(in_amount),
            "outAmount": str(out_amount),
        }
        return Quote(
            input_mint=input_mint,
            output_mint=WSOL_MINT,
            in_amount=in_amount,
            out_amount=out_amount,
            raw=raw,
        )

    return _make


@pytest.fixture
def make_swap_payload(wallet_keypair):
    """Factory for base64 swap payloads payable by the wallet keypair."""

    def _make(lamports=1):
        payer = wallet_keypair.pubkey()
        ix = transfer(
            TransferParams(from_pubkey=payer, to_pubkey=Pubkey.new_unique(), lamports=lamports)
        )
        message = MessageV0.try_compile(payer, [ix], [], Hash.default())
        tx = VersionedTransaction.populate(message, [Signature.default()])
        return SwapPayload(swap_transaction=base64.b64encode(bytes(tx)).decode("utf-8"))

    return _make
