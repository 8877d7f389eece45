"""HTTP client for downloading ICS calendar feeds - dashcal."""

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "dashcal/1.0 (+https://github.com/dashcal)",
    "Accept": "text/calendar, text/plain, application/octet-stream, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
}


class DashICSFetchError(Exception):
    """Base exception for ICS fetch errors."""


class DashICSNetworkError(DashICSFetchError):
    """Network error during ICS fetch."""


class DashICSTimeoutError(DashICSFetchError):
    """Timeout error during ICS fetch."""


class DashICSHTTPError(DashICSFetchError):
    """Non-success HTTP status during ICS fetch."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DashICSFetcher:
    """Async HTTP client for downloading ICS feeds as text."""

    def __init__(self, settings: Any = None, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize ICS fetcher.

        Args:
            settings: Object exposing request_timeout, max_retries and retry_backoff_factor
            client: Optional externally owned HTTP client; it is not closed on exit
        """
        self.settings = settings
        self.client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None
        self.request_timeout = float(getattr(settings, "request_timeout", 30))
        self.max_retries = int(getattr(settings, "max_retries", 2))
        self.backoff_factor = float(getattr(settings, "retry_backoff_factor", 1.5))

        logger.debug("ICS fetcher initialized (external_client: %s)", not self._owns_client)

    async def __aenter__(self) -> "DashICSFetcher":
        """Async context manager entry."""
        self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self.client is not None and self._owns_client:
            if not self.client.is_closed:
                await self.client.aclose()
                logger.debug("Closed HTTP client")
            self.client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            timeout = httpx.Timeout(connect=10.0, read=self.request_timeout, write=10.0, pool=30.0)
            limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
            self.client = httpx.AsyncClient(
                timeout=timeout,
                limits=limits,
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            self._owns_client = True
        return self.client

    @staticmethod
    def validate_url(url: str) -> bool:
        """Accept only http(s) URLs that carry a hostname.

        Args:
            url: Feed URL from configuration

        Returns:
            True if the URL may be fetched
        """
        try:
            parsed = urlparse(url)
        except ValueError as e:
            logger.debug("URL validation error for %s: %s", url, e)
            return False

        if parsed.scheme not in ("http", "https"):
            logger.debug("Blocked non-HTTP(S) URL: %s", url)
            return False
        if not parsed.hostname:
            logger.debug("Blocked URL with missing hostname: %s", url)
            return False
        return True

    async def fetch_text(self, url: str) -> str:
        """Download the ICS text of one feed.

        Transient network errors and timeouts are retried with exponential
        backoff plus jitter; HTTP error statuses are not retried.

        Args:
            url: http(s) feed URL

        Returns:
            Response body decoded as text

        Raises:
            DashICSFetchError: URL rejected or unexpected failure
            DashICSHTTPError: Non-2xx response
            DashICSTimeoutError: All attempts timed out
            DashICSNetworkError: All attempts failed at the network level
        """
        if not self.validate_url(url):
            raise DashICSFetchError(f"Refusing to fetch invalid URL: {url!r}")

        client = self._ensure_client()
        try:
            response = await self._get_with_retry(client, url)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DashICSHTTPError(
                f"HTTP {status}: {e.response.reason_phrase}", status_code=status
            ) from e
        except httpx.TimeoutException as e:
            raise DashICSTimeoutError(f"Request timeout after {self.request_timeout}s") from e
        except httpx.NetworkError as e:
            raise DashICSNetworkError(f"Network error: {e}") from e
        except httpx.HTTPError as e:
            raise DashICSFetchError(f"Unexpected error: {e}") from e

        content = response.text
        if "BEGIN:VCALENDAR" not in content:
            logger.warning("Content from %s does not appear to be valid ICS format", url)
        logger.debug("Fetched ICS content from %s (%d bytes)", url, len(response.content))
        return content

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff time with jitter.

        Args:
            attempt: Current retry attempt number (0-indexed)

        Returns:
            Backoff time in seconds including jitter
        """
        base_backoff = min(self.backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311
        return base_backoff + jitter

    async def _get_with_retry(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await client.get(url)
                response.raise_for_status()
                return response
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt >= self.max_retries:
                    logger.warning(
                        "All %d attempts failed for %s: %s", attempt + 1, url, e
                    )
                    raise
                backoff_time = self._calculate_backoff(attempt)
                logger.warning(
                    "Request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1
