"""
Progress events emitted by the quote pipeline and the sweep executor.

Every event carries the id of the asset it belongs to (the token's mint
address). A sweep-wide failure uses an empty asset id.
"""

from dataclasses import dataclass
from typing import Union

from .models import Quote, SwapPayload, SweepState, TokenBalance


@dataclass(frozen=True)
class AssetFound:
    """A token account was found for the asset."""

    asset_id: str
    balance: TokenBalance


@dataclass(frozen=True)
class QuoteFound:
    """The aggregator quoted the asset."""

    asset_id: str
    quote: Quote


@dataclass(frozen=True)
class SwapFound:
    """The aggregator built the swap transaction for the asset."""

    asset_id: str
    swap: SwapPayload


@dataclass(frozen=True)
class AssetFailed:
    """An asset-scoped failure; stage is quote, swap, build, sign or submit."""

    asset_id: str
    stage: str
    reason: str


@dataclass(frozen=True)
class StateChanged:
    """The asset moved to a new sweep state."""

    asset_id: str
    state: SweepState


@dataclass(frozen=True)
class TransactionSent:
    """The asset's transaction was confirmed under txid."""

    asset_id: str
    txid: str


PipelineEvent = Union[AssetFound, QuoteFound, SwapFound, AssetFailed]
SweepEvent = Union[StateChanged, TransactionSent, AssetFailed]
