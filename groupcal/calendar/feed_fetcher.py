"""HTTP client for downloading iCalendar feeds."""

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import quote, urlparse

import httpx

from ..core.http_client import build_timeout, get_shared_client
from .models import FeedResponse

logger = logging.getLogger(__name__)

GOOGLE_ICS_URL_TEMPLATE = "https://calendar.google.com/calendar/ical/{calendar_id}/public/full.ics"

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 5.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

# Upper bound for one fetch_feed call, retries and backoff included
DEFAULT_FETCH_DEADLINE_SECONDS = 30.0


class FeedFetchError(Exception):
    """Base exception for feed fetch errors."""


class FeedHTTPError(FeedFetchError):
    """Upstream answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FeedNetworkError(FeedFetchError):
    """Network error during feed fetch."""


class FeedTimeoutError(FeedFetchError):
    """Timeout during feed fetch."""


def build_feed_url(calendar_id: str) -> str:
    """Build the public feed URL for a calendar identifier.

    Identifiers that already are http(s) URLs are used verbatim; anything
    else is treated as a Google calendar ID.
    """
    calendar_id = calendar_id.strip()
    if calendar_id.lower().startswith(("http://", "https://")):
        return calendar_id
    return GOOGLE_ICS_URL_TEMPLATE.format(calendar_id=quote(calendar_id, safe=""))


class FeedFetcher:
    """Async HTTP client for downloading public iCalendar feeds."""

    def __init__(self, settings: Any, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize feed fetcher.

        Args:
            settings: Settings providing request_timeout, max_retries,
                retry_backoff_factor and fetch_deadline_seconds
            client: Optional client to use instead of the shared pool
        """
        self.settings = settings
        self.client: Optional[httpx.AsyncClient] = client
        self._client_id = "feed_fetcher"
        self.request_timeout = float(getattr(settings, "request_timeout", 10))
        self.max_retries = int(getattr(settings, "max_retries", 1))
        self.backoff_factor = float(getattr(settings, "retry_backoff_factor", 0.5))
        self.fetch_deadline = float(
            getattr(settings, "fetch_deadline_seconds", DEFAULT_FETCH_DEADLINE_SECONDS)
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = await get_shared_client(
                self._client_id, timeout=build_timeout(self.request_timeout)
            )
        return self.client

    def _validate_url(self, url: str) -> bool:
        """Only allow http(s) URLs with a hostname."""
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

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped at MAX_BACKOFF_SECONDS."""
        base_backoff = min(self.backoff_factor * (2**attempt), MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def fetch_feed(self, url: str) -> FeedResponse:
        """Download feed text.

        Timeouts and network errors are retried up to ``max_retries`` times;
        HTTP status errors are not. All attempts and backoff sleeps together
        are bounded by ``fetch_deadline_seconds``.

        Args:
            url: Feed URL

        Returns:
            FeedResponse with the buffered body

        Raises:
            FeedHTTPError: Blocked URL or non-success HTTP status
            FeedTimeoutError: Every attempt timed out or the overall deadline passed
            FeedNetworkError: Every attempt failed at the network level
            FeedFetchError: Empty body or any other unexpected failure
        """
        if not self._validate_url(url):
            raise FeedHTTPError(f"URL blocked: {url}", status_code=None)

        client = await self._ensure_client()
        try:
            return await asyncio.wait_for(
                self._fetch_with_retries(client, url), timeout=self.fetch_deadline
            )
        except asyncio.TimeoutError as e:
            logger.warning("Feed fetch from %s exceeded %.1fs deadline", url, self.fetch_deadline)
            raise FeedTimeoutError(
                f"Fetch deadline of {self.fetch_deadline}s exceeded: {url}"
            ) from e

    async def _fetch_with_retries(self, client: httpx.AsyncClient, url: str) -> FeedResponse:
        attempt = 0
        while True:
            try:
                logger.debug("Fetching feed from %s (attempt %d)", url, attempt + 1)
                response = await client.get(url, timeout=build_timeout(self.request_timeout))
                response.raise_for_status()
                return self._create_response(response)

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("HTTP %d fetching feed from %s", status, url)
                raise FeedHTTPError(
                    f"HTTP {status}: {e.response.reason_phrase}", status_code=status
                ) from e

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt < self.max_retries:
                    backoff_time = self._calculate_backoff(attempt)
                    logger.warning(
                        "Feed request failed (attempt %d/%d), retrying in %.1fs: %s",
                        attempt + 1,
                        self.max_retries + 1,
                        backoff_time,
                        e,
                    )
                    await asyncio.sleep(backoff_time)
                    attempt += 1
                    continue
                if isinstance(e, httpx.TimeoutException):
                    raise FeedTimeoutError(
                        f"Request timeout after {self.request_timeout}s: {url}"
                    ) from e
                raise FeedNetworkError(f"Network error fetching {url}: {e}") from e

            except FeedFetchError:
                raise

            except Exception as e:
                logger.exception("Unexpected error fetching feed from %s", url)
                raise FeedFetchError(f"Unexpected error: {e}") from e

    def _create_response(self, http_response: httpx.Response) -> FeedResponse:
        headers = dict(http_response.headers)
        content = http_response.text

        content_type = headers.get("content-type", "").lower()
        if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
            logger.warning("Unexpected content type: %s", content_type)

        if not content or not content.strip():
            raise FeedFetchError("Empty content received")

        logger.debug("Fetched feed content (%d bytes)", len(content))
        return FeedResponse(
            success=True,
            content=content,
            status_code=http_response.status_code,
            headers=headers,
        )
