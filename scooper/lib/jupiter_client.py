"""
Jupiter aggregator client.

This module wraps the Jupiter quote and swap endpoints and the token list
service that provides the token directory.
"""

from dataclasses import replace
from typing import Any, Dict, List

from .api_client import BaseAPIClient
from .errors import APIError, QuoteError, SwapError
from .models import Quote, SwapPayload, TokenDirectory, TokenInfo


JUPITER_QUOTE_API = "https://quote-api.jup.ag/v6"
JUPITER_TOKEN_API = "https://token.jup.ag"

# Wrapped SOL mint, the default sweep target
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_SLIPPAGE_BPS = 50

# Amounts travel as u64 on chain
U64_MAX = 2**64 - 1


class JupiterClient(BaseAPIClient):
    """
    Client for the Jupiter swap aggregator.

    Quote failures raise QuoteError, swap failures raise SwapError.
    """

    def __init__(
        self,
        quote_api: str = JUPITER_QUOTE_API,
        token_api: str = JUPITER_TOKEN_API,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        **retry_options: Any,
    ):
        """
        Initialize the Jupiter client.

        Args:
            quote_api: Base URL of the quote/swap API
            token_api: Base URL of the token list API
            slippage_bps: Slippage tolerance in basis points
            **retry_options: Passed through to BaseAPIClient
        """
        super().__init__(**retry_options)
        self.quote_api = quote_api.rstrip("/")
        self.token_api = token_api.rstrip("/")
        self.slippage_bps = slippage_bps

    def get_quote(self, input_mint: str, output_mint: str, amount: int) -> Quote:
        """
        Request a quote for swapping `amount` raw units of input_mint.

        The amount is sent as an exact integer string.

        Raises:
            QuoteError: If the aggregator cannot price the swap
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(self.slippage_bps),
        }
        try:
            response = self._execute_with_retry(
                lambda: self.session.get(
                    f"{self.quote_api}/quote", params=params, timeout=self.timeout
                )
            )
            return Quote.from_response(response.json())
        except APIError as e:
            raise QuoteError(
                f"Quote failed for {input_mint}: {e}", status_code=e.status_code
            ) from e
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise QuoteError(f"Malformed quote for {input_mint}: {e}") from e

    def get_swap(self, wallet_address: str, quote: Quote) -> SwapPayload:
        """
        Request the swap transaction for an accepted quote.

        Raises:
            SwapError: If the aggregator cannot build the transaction
        """
        body = {
            "userPublicKey": wallet_address,
            "quoteResponse": quote.raw,
            "wrapAndUnwrapSol": True,
        }
        try:
            response = self._execute_with_retry(
                lambda: self.session.post(f"{self.quote_api}/swap", json=body, timeout=self.timeout)
            )
            return SwapPayload.from_response(response.json())
        except APIError as e:
            raise SwapError(
                f"Swap failed for {quote.input_mint}: {e}", status_code=e.status_code
            ) from e
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SwapError(f"Malformed swap for {quote.input_mint}: {e}") from e

    def _get_token_list(self, name: str) -> List[Dict[str, Any]]:
        response = self._execute_with_retry(
            lambda: self.session.get(f"{self.token_api}/{name}", timeout=self.timeout)
        )
        try:
            tokens = response.json()
        except ValueError as e:
            raise APIError(f"Malformed token list '{name}': {e}") from e
        if not isinstance(tokens, list):
            raise APIError(f"Token list '{name}' is not a list")
        return tokens

    def get_token_directory(self) -> TokenDirectory:
        """
        Load every known token, flagging those on the strict list.

        Strict entries missing from the full list are ignored.

        Returns:
            Dict of TokenInfo keyed by mint address

        Raises:
            APIError: If either list cannot be fetched or holds a malformed entry
        """
        directory: TokenDirectory = {}
        all_tokens = self._get_token_list("all")
        strict_tokens = self._get_token_list("strict")
        try:
            for entry in all_tokens:
                token = TokenInfo.from_dict(entry)
                directory[token.address] = token

            for entry in strict_tokens:
                address = entry["address"]
                if address in directory:
                    directory[address] = replace(directory[address], strict=True)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise APIError(f"Malformed token list entry: {e!r}") from e

        return directory
