"""
Solana JSON-RPC client.

This module provides the ledger connection used by the scanner and the
sweep executor: program account queries, the latest blockhash, and
transaction submission with confirmation polling.
"""

import base64
import time
from typing import Any, Dict, List, Optional

from solders.hash import Hash

from .api_client import BaseAPIClient
from .errors import APIError, LedgerConnectionError, SubmissionError


DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

DEFAULT_COMMITMENT = "confirmed"
DEFAULT_CONFIRM_TIMEOUT = 60.0  # seconds
DEFAULT_POLL_INTERVAL = 0.8  # seconds


class SolanaRPCClient(BaseAPIClient):
    """
    Ledger connection backed by a Solana JSON-RPC endpoint.

    Read calls raise LedgerConnectionError; submission raises SubmissionError.
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        commitment: str = DEFAULT_COMMITMENT,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        **retry_options: Any,
    ):
        """
        Initialize the RPC client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            commitment: Commitment level used for reads and confirmation
            confirm_timeout: Seconds to wait for a signature to confirm
            poll_interval: Seconds between signature status polls
            **retry_options: Passed through to BaseAPIClient
        """
        super().__init__(**retry_options)
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval

    def _request(self, method: str, params: List[Any], request_id: int = 1) -> Any:
        """
        Make a JSON-RPC request with automatic 429 retry and exponential backoff.

        Args:
            method: JSON-RPC method name
            params: Method parameters
            request_id: JSON-RPC request ID

        Returns:
            The 'result' field from the JSON-RPC response

        Raises:
            APIError: For transport or JSON-RPC errors
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }

        response = self._execute_with_retry(
            lambda: self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        )
        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"Malformed response to {method}: {e}") from e

        if "error" in data:
            error = data["error"]
            raise APIError(
                f"RPC error: {error.get('message', str(error))}",
                status_code=error.get("code"),
            )

        return data.get("result")

    def get_program_accounts(
        self, program_id: str, filters: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Fetch accounts owned by a program, parsed by the node.

        Args:
            program_id: Owning program address
            filters: getProgramAccounts filters (dataSize, memcmp)

        Returns:
            List of {"pubkey": ..., "account": {...}} records

        Raises:
            LedgerConnectionError: If the query fails or the result is malformed
        """
        try:
            result = self._request(
                "getProgramAccounts",
                [
                    program_id,
                    {
                        "encoding": "jsonParsed",
                        "commitment": self.commitment,
                        "filters": filters,
                    },
                ],
            )
        except APIError as e:
            raise LedgerConnectionError(
                f"getProgramAccounts failed for {program_id}: {e}", status_code=e.status_code
            ) from e

        if not isinstance(result, list):
            raise LedgerConnectionError(f"getProgramAccounts returned {type(result).__name__}")
        return result

    def get_latest_blockhash(self) -> Hash:
        """
        Fetch the latest blockhash.

        Raises:
            LedgerConnectionError: If the request fails or no blockhash is returned
        """
        try:
            result = self._request("getLatestBlockhash", [{"commitment": self.commitment}])
        except APIError as e:
            raise LedgerConnectionError(
                f"getLatestBlockhash failed: {e}", status_code=e.status_code
            ) from e

        blockhash = ((result or {}).get("value") or {}).get("blockhash")
        if not blockhash:
            raise LedgerConnectionError(f"getLatestBlockhash returned no blockhash: {result}")
        return Hash.from_string(blockhash)

    def send_transaction(self, raw: bytes) -> str:
        """
        Submit a signed, serialized transaction.

        Returns:
            The transaction signature

        Raises:
            SubmissionError: If the node rejects the transaction
        """
        tx_b64 = base64.b64encode(raw).decode("utf-8")
        try:
            signature = self._request(
                "sendTransaction",
                [
                    tx_b64,
                    {
                        "encoding": "base64",
                        "preflightCommitment": self.commitment,
                    },
                ],
            )
        except APIError as e:
            raise SubmissionError(f"sendTransaction failed: {e}", status_code=e.status_code) from e

        if not signature:
            raise SubmissionError("sendTransaction returned no signature")
        return str(signature)

    def confirm_transaction(self, signature: str) -> None:
        """
        Poll until a signature reaches the configured commitment.

        Raises:
            SubmissionError: If the transaction failed on chain or timed out
        """
        deadline = time.monotonic() + self.confirm_timeout
        while True:
            status = self._get_signature_status(signature)
            if status is not None:
                if status.get("err"):
                    raise SubmissionError(f"Transaction {signature} failed: {status['err']}")
                level = (status.get("confirmationStatus") or "").lower()
                if level in ("confirmed", "finalized"):
                    return
            if time.monotonic() >= deadline:
                raise SubmissionError(f"Timed out waiting for confirmation: {signature}")
            time.sleep(self.poll_interval)

    def _get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        try:
            result = self._request(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
        except APIError as e:
            raise SubmissionError(
                f"getSignatureStatuses failed for {signature}: {e}", status_code=e.status_code
            ) from e
        return ((result or {}).get("value") or [None])[0]

    def send_and_confirm(self, raw: bytes) -> str:
        """
        Submit a signed transaction and wait for confirmation.

        Args:
            raw: Serialized signed transaction

        Returns:
            The transaction signature

        Raises:
            SubmissionError: If submission or confirmation fails
        """
        signature = self.send_transaction(raw)
        self.confirm_transaction(signature)
        return signature
