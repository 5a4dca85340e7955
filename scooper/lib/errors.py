"""
Exception hierarchy for the dust scooper.

Quote, swap and submission errors are scoped to a single asset and are
reported as events. Signing errors are fatal to a whole sweep.
"""

from typing import Optional


class ScooperError(Exception):
    """Base exception for all scooper errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class APIError(ScooperError):
    """Exception raised when an HTTP or JSON-RPC call fails."""

    pass


class RateLimitError(APIError):
    """Exception raised when rate limit is exceeded and retries are exhausted."""

    pass


class LedgerConnectionError(ScooperError):
    """The ledger RPC is unreachable or returned a malformed response."""

    pass


class QuoteError(ScooperError):
    """The aggregator rejected or failed to price an asset."""

    pass


class SwapError(ScooperError):
    """The aggregator failed to build a swap transaction for a quote."""

    pass


class SigningError(ScooperError):
    """The wallet rejected or failed to sign a batch of transactions."""

    pass


class SubmissionError(ScooperError):
    """A signed transaction was rejected or could not be confirmed."""

    pass
