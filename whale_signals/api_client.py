"""
Polymarket Data API client with rate limiting and error handling.

Only the two public endpoints the signal engine needs are wrapped:
- /trades: the trailing trade window
- /v1/leaderboard: ranked wallets per leaderboard period
"""

import asyncio
import logging
import time
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from .config import settings

logger = logging.getLogger(__name__)

# Leaderboard period label -> Data API timePeriod value
PERIOD_PARAMS = {
    "Daily": "DAY",
    "Weekly": "WEEK",
    "Monthly": "MONTH",
    "All Time": "ALL",
}


class RateLimiter:
    """
    Sliding window rate limiter for API requests.

    Tracks requests over a 10-second window to stay under Polymarket's
    published limits.
    """

    def __init__(self, requests_per_10s: int):
        """
        Initialize rate limiter.

        Args:
            requests_per_10s: Maximum requests allowed per 10 seconds.
        """
        self.requests_per_10s = requests_per_10s
        self.window_size = 10.0  # seconds
        self.request_timestamps: list[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """
        Acquire permission to make a request.

        Blocks if rate limit would be exceeded.
        """
        async with self._lock:
            now = time.time()
            self.request_timestamps = [
                ts for ts in self.request_timestamps
                if now - ts < self.window_size
            ]

            if len(self.request_timestamps) >= self.requests_per_10s:
                oldest = self.request_timestamps[0]
                wait_time = self.window_size - (now - oldest)
                if wait_time > 0:
                    logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)
                    now = time.time()
                    self.request_timestamps = [
                        ts for ts in self.request_timestamps
                        if now - ts < self.window_size
                    ]

            self.request_timestamps.append(time.time())


class PolymarketAPIError(Exception):
    """Custom exception for Polymarket API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class RateLimitedError(PolymarketAPIError):
    """The API answered 429; the request is retried."""


class PolymarketClient:
    """
    Async client for the Polymarket Data API.

    Provides trade and leaderboard queries with automatic rate limiting and
    retry logic.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the client.

        Args:
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests.
        """
        self.data_url = settings.data_api_url.rstrip("/")
        self.timeout = settings.request_timeout_seconds
        self.rate_limiter = RateLimiter(settings.rate_limit_requests)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PolymarketClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TransportError, RateLimitedError)),
        reraise=True,
    )
    async def _request(self, method: str, url: str, **kwargs) -> Any:
        """
        Make an HTTP request with rate limiting and retries.

        Transport failures and 429 responses are retried; other HTTP errors
        fail immediately.

        Raises:
            PolymarketAPIError: On an error status or a non-JSON body.
            httpx.TransportError: When the connection keeps failing.
        """
        await self.rate_limiter.acquire()
        client = await self._get_client()

        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"Request failed: {url}: {e}")
            raise

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", "10"))
            logger.warning(f"Rate limited, waiting {retry_after}s")
            await asyncio.sleep(retry_after)
            raise RateLimitedError("Rate limited", status_code=429)

        if response.is_error:
            logger.error(f"HTTP error {response.status_code}: {response.text}")
            raise PolymarketAPIError(
                f"HTTP error: {response.text}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise PolymarketAPIError(f"Invalid JSON from {url}: {e}") from e

    async def request(self, method: str, url: str, **kwargs) -> Any:
        """Like _request, but transport failures surface as PolymarketAPIError."""
        try:
            return await self._request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise PolymarketAPIError(f"Request failed: {e}") from e

    async def get_trades(
        self,
        limit: int = 500,
        offset: int = 0,
        taker_only: bool = True,
    ) -> list[dict]:
        """
        Get the most recent trades across all markets.

        Args:
            limit: Page size.
            offset: Pagination offset.
            taker_only: Only return the taker side of each fill.

        Returns:
            List of raw trade records, newest first.
        """
        params = {
            "limit": limit,
            "offset": offset,
            "takerOnly": str(taker_only).lower(),
        }
        response = await self.request("GET", f"{self.data_url}/trades", params=params)

        if isinstance(response, list):
            return response
        return response.get("data", [])

    async def get_leaderboard(
        self,
        period: str = "Daily",
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        """
        Get one page of the profit leaderboard.

        Args:
            period: "Daily", "Weekly", "Monthly" or "All Time".
            limit: Page size.
            offset: Pagination offset.

        Returns:
            List of raw leaderboard rows.

        Raises:
            ValueError: For an unknown period label.
        """
        if period not in PERIOD_PARAMS:
            raise ValueError(f"Unknown leaderboard period: {period}")
        params = {
            "timePeriod": PERIOD_PARAMS[period],
            "orderBy": "PNL",
            "limit": limit,
            "offset": offset,
        }
        response = await self.request("GET", f"{self.data_url}/v1/leaderboard", params=params)

        if isinstance(response, list):
            return response
        return response.get("data", [])


def create_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> PolymarketClient:
    """Create a new Polymarket API client."""
    return PolymarketClient(transport=transport)
