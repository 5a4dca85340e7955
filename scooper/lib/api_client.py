"""
Base HTTP client with automatic rate limit handling and retry logic.

Both the Solana RPC client and the Jupiter client build on this class,
which owns the requests session and the 429/5xx retry loop.
"""

import random
import time
from typing import Callable

import requests

from .errors import APIError, RateLimitError


# Retry configuration
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_DELAY = 32.0  # seconds
DEFAULT_JITTER = 0.1  # ±10%
DEFAULT_TIMEOUT = 30.0  # seconds per request


class BaseAPIClient:
    """
    HTTP client base with automatic 429 retry handling.

    Handles:
    - HTTP 429 rate limit retries with exponential backoff
    - Server error (5xx) and connection error retries
    - A shared requests.Session
    """

    def __init__(
        self,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the client.

        Args:
            initial_delay: Initial delay in seconds for retry backoff
            backoff_multiplier: Multiplier for exponential backoff
            max_retries: Maximum number of retry attempts
            max_delay: Maximum delay cap in seconds
            jitter: Jitter factor (±percentage) to randomize delays
            timeout: Per-request timeout in seconds
        """
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.session = requests.Session()

    def _apply_jitter(self, delay: float) -> float:
        """Apply random jitter to a delay value."""
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)

    def _backoff(self, delay: float) -> float:
        """Sleep for the current delay and return the next one."""
        time.sleep(self._apply_jitter(min(delay, self.max_delay)))
        return delay * self.backoff_multiplier

    def _execute_with_retry(
        self,
        request_func: Callable[[], requests.Response],
    ) -> requests.Response:
        """
        Execute a request function with retry logic for rate limits and server errors.

        Args:
            request_func: A callable that returns a requests.Response

        Returns:
            The successful response

        Raises:
            APIError: For API errors after retries exhausted
            RateLimitError: When rate limit retries are exhausted
        """
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            try:
                response = request_func()
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    delay = self._backoff(delay)
                    continue
                raise APIError(f"Request failed: {e}") from e

            if response.status_code == 429:
                if attempt < self.max_retries:
                    delay = self._backoff(delay)
                    continue
                raise RateLimitError(
                    "Rate limit exceeded and max retries reached",
                    status_code=429,
                )

            if response.status_code >= 500:
                if attempt < self.max_retries:
                    delay = self._backoff(delay)
                    continue
                raise APIError(
                    f"Server error: {response.status_code}",
                    status_code=response.status_code,
                )

            if response.status_code >= 400:
                body = response.text[:300] if response.text else ""
                raise APIError(
                    f"Client error: {response.status_code} {body}".rstrip(),
                    status_code=response.status_code,
                )

            return response

        raise APIError("Max retries exceeded")
