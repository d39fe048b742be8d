"""Unit tests for groupcal.calendar.service."""

import asyncio
from datetime import datetime

import httpx
import pytest

from groupcal.calendar.service import CalendarEventsService
from tests.conftest import FEED_URL, FakeClock, FeedSpy, make_ics

pytestmark = pytest.mark.unit


class TestGetCalendarEventsWindow:
    """Tests for the public window operation."""

    async def test_get_window_when_no_bounds_then_default_window_items(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        service: CalendarEventsService = make_service()

        result = await service.get_calendar_events_window(now=fixed_now)

        assert result.range_start_date_key == "2024-03-10"
        assert result.range_end_date_key == "2024-03-24"
        assert [(i.title, i.days_offset) for i in result.items] == [
            ("Today Event", 0),
            ("Last Day", 14),
        ]
        assert feed_spy.calls == 1

    async def test_get_window_when_start_after_end_then_empty_without_fetch(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        service = make_service()

        result = await service.get_calendar_events_window("2024-03-20", "2024-03-10", now=fixed_now)

        assert result.items == ()
        assert (result.range_start_date_key, result.range_end_date_key) == (
            "2024-03-20",
            "2024-03-10",
        )
        assert feed_spy.calls == 0
        assert service.cache.stats["misses"] == 0

    async def test_get_window_when_malformed_dates_then_defaults(
        self, make_service, fixed_now: datetime
    ) -> None:
        service = make_service()

        result = await service.get_calendar_events_window("03/10/2024", "soon", now=fixed_now)

        assert (result.range_start_date_key, result.range_end_date_key) == (
            "2024-03-10",
            "2024-03-24",
        )

    async def test_get_window_when_recurring_feed_then_thursday_instances(
        self, make_service, feed_spy: FeedSpy, sample_ics_recurring: str, fixed_now: datetime
    ) -> None:
        feed_spy.content = sample_ics_recurring
        service = make_service()

        result = await service.get_calendar_events_window(now=fixed_now)

        assert [i.start_at[:10] for i in result.items] == ["2024-03-14", "2024-03-21"]
        assert len({i.id for i in result.items}) == 2

    async def test_get_window_when_configured_past_days_then_window_extends_back(
        self, make_service, fixed_now: datetime
    ) -> None:
        service = make_service(window_past_days=1)

        result = await service.get_calendar_events_window(now=fixed_now)

        assert result.range_start_date_key == "2024-03-09"
        assert [i.days_offset for i in result.items] == [0, -1, 14]


class TestCaching:
    """Tests for TTL and single-flight through the service."""

    async def test_get_window_when_concurrent_calls_then_single_fetch(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        service = make_service()

        results = await asyncio.gather(
            *[service.get_calendar_events_window(now=fixed_now) for _ in range(8)]
        )

        assert feed_spy.calls == 1
        assert len({tuple(r.items) for r in results}) == 1

    async def test_get_window_when_ttl_elapses_then_refetches(
        self, make_service, feed_spy: FeedSpy, fake_clock: FakeClock, fixed_now: datetime
    ) -> None:
        service = make_service()

        await service.get_calendar_events_window(now=fixed_now)
        fake_clock.advance(29)
        await service.get_calendar_events_window(now=fixed_now)
        assert feed_spy.calls == 1

        fake_clock.advance(1)
        await service.get_calendar_events_window(now=fixed_now)
        assert feed_spy.calls == 2

    async def test_get_window_when_different_windows_then_separate_fetches(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        service = make_service()

        await service.get_calendar_events_window("2024-03-10", "2024-03-12", now=fixed_now)
        await service.get_calendar_events_window("2024-03-10", "2024-03-13", now=fixed_now)

        assert feed_spy.calls == 2


class TestDegradedUpstream:
    """Failures yield empty results and are never cached."""

    async def test_get_window_when_upstream_500_then_empty_and_not_cached(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        feed_spy.status_code = 500
        service = make_service()

        result = await service.get_calendar_events_window(now=fixed_now)
        assert result.items == ()
        assert result.range_end_date_key == "2024-03-24"

        await service.get_calendar_events_window(now=fixed_now)
        assert feed_spy.calls == 2
        assert service.cache.stats["failures"] == 2

    async def test_get_window_when_body_unparseable_then_empty(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        feed_spy.content = "<html>Service Unavailable</html>"
        service = make_service()

        result = await service.get_calendar_events_window(now=fixed_now)

        assert result.items == ()
        assert service.cache.stats["failures"] == 1

    async def test_get_window_when_timeout_then_empty(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        feed_spy.error = lambda request: httpx.ConnectTimeout("timed out", request=request)
        service = make_service()

        result = await service.get_calendar_events_window(now=fixed_now)

        assert result.items == ()
        # One retry is configured
        assert feed_spy.calls == 2

    async def test_get_window_when_feed_recovers_then_items_returned(
        self, make_service, feed_spy: FeedSpy, fixed_now: datetime
    ) -> None:
        feed_spy.status_code = 503
        service = make_service()
        assert (await service.get_calendar_events_window(now=fixed_now)).items == ()

        feed_spy.status_code = 200
        feed_spy.content = make_ics()
        result = await service.get_calendar_events_window(now=fixed_now)

        assert result.items == ()
        assert service.cache.get_stats()["current_size"] == 1


class TestServiceWiring:
    """Tests for defaults derived from settings."""

    def test_service_when_url_calendar_id_then_feed_url_verbatim(self, test_settings) -> None:
        service = CalendarEventsService(test_settings)

        assert service.feed_url == FEED_URL
        assert service.timezone == "America/Indiana/Indianapolis"
        assert service.cache.ttl_seconds == 30.0

    def test_resolve_when_now_given_then_today_in_configured_zone(self, test_settings) -> None:
        service = CalendarEventsService(test_settings.model_copy(update={"timezone": "UTC"}))

        window = service.resolve(now=datetime.fromisoformat("2024-03-11T03:00:00+00:00"))

        assert window.today_date_key == "2024-03-11"
