"""Shared fixtures for groupcal tests."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import pytest

from groupcal.cache.window_cache import CalendarWindowCache
from groupcal.calendar.feed_fetcher import FeedFetcher
from groupcal.calendar.service import CalendarEventsService
from groupcal.core.config_manager import FeedSettings
from groupcal.core.http_client import close_all_clients

FEED_URL = "https://calendar.test/groupcal/public/full.ics"

# 13:00 EDT in Indianapolis, so today is 2024-03-10 (the day DST starts)
FIXED_NOW = datetime(2024, 3, 10, 17, 0, tzinfo=timezone.utc)


def make_ics(*events: str) -> str:
    """Wrap VEVENT bodies in a VCALENDAR document."""
    blocks = [f"BEGIN:VEVENT\n{body.strip()}\nEND:VEVENT" for body in events]
    return "\n".join(
        [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "PRODID:-//groupcal test//EN",
            "CALSCALE:GREGORIAN",
            *blocks,
            "END:VCALENDAR",
        ]
    )


def single_event(uid: str, dtstart: str, summary: str, extra: str = "") -> str:
    """VEVENT body for a one-hour non-recurring event."""
    lines = [
        f"UID:{uid}",
        f"DTSTART:{dtstart}",
        f"SUMMARY:{summary}",
        "DTSTAMP:20240101T000000Z",
    ]
    if extra:
        lines.append(extra.strip())
    return "\n".join(lines)


WEEKLY_THURSDAY_EVENT = """
UID:weekly-group@groupcal.test
DTSTART:20240103T230000Z
DTEND:20240104T000000Z
RRULE:FREQ=WEEKLY;BYDAY=TH
SUMMARY:Small Group
LOCATION:Fellowship Hall
DTSTAMP:20240101T000000Z
"""


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FeedSpy:
    """httpx.MockTransport handler that counts upstream fetches.

    Set ``gate`` to hold every request until the event is set.
    """

    def __init__(self, content: str = "", status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Callable[[httpx.Request], Exception]] = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error(request)
        return httpx.Response(
            self.status_code,
            text=self.content,
            headers={"content-type": "text/calendar; charset=utf-8"},
        )


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close pooled httpx clients after every test."""
    yield
    await close_all_clients()


@pytest.fixture
def fixed_now() -> datetime:
    """Instant whose date key in the default zone is 2024-03-10."""
    return FIXED_NOW


@pytest.fixture
def test_settings() -> FeedSettings:
    """Settings pointing at a fake feed, with retries that do not sleep."""
    return FeedSettings(
        calendar_id=FEED_URL,
        max_retries=1,
        retry_backoff_factor=0,
        request_timeout=5,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_ics_window() -> str:
    """Four single events around the default window for 2024-03-10."""
    return make_ics(
        single_event("before@groupcal.test", "20240309T150000Z", "Day Before"),
        single_event("today@groupcal.test", "20240310T150000Z", "Today Event"),
        single_event("last-day@groupcal.test", "20240324T150000Z", "Last Day"),
        single_event("after@groupcal.test", "20240325T150000Z", "Day After"),
    )


@pytest.fixture
def sample_ics_recurring() -> str:
    """Weekly Thursday series starting 2024-01-03 with no end."""
    return make_ics(WEEKLY_THURSDAY_EVENT)


@pytest.fixture
def feed_spy(sample_ics_window: str) -> FeedSpy:
    return FeedSpy(sample_ics_window)


@pytest.fixture
async def mock_client(feed_spy: FeedSpy) -> AsyncIterator[httpx.AsyncClient]:
    """httpx client whose transport is the feed spy."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(feed_spy))
    yield client
    await client.aclose()


@pytest.fixture
def make_service(
    test_settings: FeedSettings, mock_client: httpx.AsyncClient, fake_clock: FakeClock
) -> Callable[..., CalendarEventsService]:
    """Factory for services wired to the feed spy and the fake clock."""

    def _make(**overrides: Any) -> CalendarEventsService:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return CalendarEventsService(
            settings,
            fetcher=FeedFetcher(settings, client=mock_client),
            cache=CalendarWindowCache(
                ttl_seconds=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
                clock=fake_clock,
            ),
        )

    return _make
