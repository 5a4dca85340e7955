"""
Data models for dust sweeping.

This module defines the token, balance, quote and swap records that flow
through the scan, quote and sweep stages, plus the per-asset sweep state.
"""

import base64
import binascii
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from solders.transaction import VersionedTransaction


# CSV column order for the sweep report
REPORT_COLUMNS = [
    "symbol",
    "mint",
    "quantity",
    "expected_output",
    "strict",
    "state",
    "txid",
    "error",
]


@dataclass(frozen=True)
class TokenInfo:
    """
    Token metadata from the token directory.

    The strict flag marks tokens that also appear on the curated list.
    """

    address: str
    decimals: int
    name: str
    symbol: str
    tags: Tuple[str, ...] = ()
    chain_id: int = 101
    logo_uri: Optional[str] = None
    strict: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = False) -> "TokenInfo":
        """
        Build a TokenInfo from a token list entry.

        Args:
            data: Token list entry (address, decimals, name, symbol, tags, ...)
            strict: Whether the token is on the strict list

        Returns:
            TokenInfo instance
        """
        return cls(
            address=data["address"],
            decimals=int(data.get("decimals", 0)),
            name=data.get("name") or "",
            symbol=data.get("symbol") or "",
            tags=tuple(data.get("tags") or ()),
            chain_id=int(data.get("chainId", 101)),
            logo_uri=data.get("logoURI"),
            strict=strict,
        )


# Known tokens keyed by mint address
TokenDirectory = Dict[str, TokenInfo]


@dataclass(frozen=True)
class TokenBalance:
    """A token account held by the wallet and its raw balance."""

    account: str  # Token account address
    program_id: str  # Token program that owns the account
    token: TokenInfo
    balance: int  # Raw integer units, never scaled


@dataclass(frozen=True)
class Quote:
    """Exchange terms for swapping one asset into the target mint."""

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    other_amount_threshold: int = 0
    slippage_bps: int = 0
    price_impact_pct: str = "0"
    route_labels: Tuple[str, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def rate(self) -> Decimal:
        """Output units received per input unit (raw units on both sides)."""
        if self.in_amount == 0:
            return Decimal(0)
        return Decimal(self.out_amount) / Decimal(self.in_amount)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "Quote":
        """
        Build a Quote from an aggregator quote response.

        The full response is kept in `raw` because the swap endpoint
        expects it back verbatim.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a quote object, got {type(data).__name__}")
        labels = tuple(
            step.get("swapInfo", {}).get("label", "") for step in data.get("routePlan") or []
        )
        return cls(
            input_mint=data["inputMint"],
            output_mint=data["outputMint"],
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            other_amount_threshold=int(data.get("otherAmountThreshold") or 0),
            slippage_bps=int(data.get("slippageBps") or 0),
            price_impact_pct=str(data.get("priceImpactPct") or "0"),
            route_labels=labels,
            raw=data,
        )


@dataclass(frozen=True)
class SwapPayload:
    """An unsigned swap transaction built by the aggregator."""

    swap_transaction: str  # Base64 encoded VersionedTransaction
    last_valid_block_height: Optional[int] = None
    prioritization_fee_lamports: Optional[int] = None

    def to_transaction(self) -> VersionedTransaction:
        """
        Decode the transport encoding into a transaction.

        Raises:
            ValueError: If the payload is not valid base64 or not a transaction
        """
        try:
            raw = base64.b64decode(self.swap_transaction, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Swap payload is not valid base64: {e}") from e
        try:
            return VersionedTransaction.from_bytes(raw)
        except Exception as e:
            raise ValueError(f"Swap payload is not a transaction: {e}") from e

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "SwapPayload":
        """Build a SwapPayload from an aggregator swap response."""
        if not isinstance(data, dict):
            raise TypeError(f"Expected a swap object, got {type(data).__name__}")
        height = data.get("lastValidBlockHeight")
        fee = data.get("prioritizationFeeLamports")
        return cls(
            swap_transaction=data["swapTransaction"],
            last_valid_block_height=int(height) if height is not None else None,
            prioritization_fee_lamports=int(fee) if fee is not None else None,
        )


@dataclass
class Asset:
    """
    Working record tracking one token through quoting and sweeping.

    The key is the token's mint address.
    """

    balance: TokenBalance
    quote: Optional[Quote] = None
    swap: Optional[SwapPayload] = None
    approved: bool = False
    error: Optional[str] = None

    @property
    def key(self) -> str:
        return self.balance.token.address

    @property
    def needs_closure(self) -> bool:
        """Empty account with nothing to swap; only the rent is reclaimed."""
        return self.balance.balance == 0 and self.swap is None

    @property
    def is_sweepable(self) -> bool:
        return self.approved and (self.swap is not None or self.balance.balance == 0)


class SweepState(Enum):
    """Lifecycle of one asset during a sweep."""

    PENDING = "Pending"
    SCOOPING = "Scooping"
    SCOOPED = "Scooped"
    ERROR = "Error"

    @property
    def is_terminal(self) -> bool:
        return self in (SweepState.SCOOPED, SweepState.ERROR)


# Allowed state transitions
_TRANSITIONS = {
    SweepState.PENDING: (SweepState.SCOOPING,),
    SweepState.SCOOPING: (SweepState.SCOOPED, SweepState.ERROR),
    SweepState.SCOOPED: (),
    SweepState.ERROR: (),
}


@dataclass
class SweepOutcome:
    """Final state of one asset after a sweep."""

    asset_id: str
    state: SweepState = SweepState.PENDING
    error: Optional[str] = None
    txid: Optional[str] = None

    def advance(self, state: SweepState) -> None:
        """
        Move to the next state.

        Raises:
            ValueError: If the transition is not allowed
        """
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid transition for {self.asset_id}: {self.state.value} -> {state.value}"
            )
        self.state = state
