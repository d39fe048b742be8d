"""Calendar window service: the single entry point the application calls."""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from ..cache.window_cache import CacheKey, CalendarWindowCache
from ..core.config_manager import FeedSettings
from ..core.date_keys import today_date_key
from .feed_fetcher import FeedFetcher, build_feed_url
from .feed_parser import FeedParser
from .models import CalendarEventItem, CalendarEventsWindowResult
from .window import CalendarWindow, resolve_window

logger = logging.getLogger(__name__)


class CalendarEventsService:
    """Resolves calendar items for a date-key window.

    Owns the fetcher, the parser and the window cache. One instance is meant
    to be shared by every request handled on an event loop so that
    concurrent requests for the same window coalesce into one upstream fetch.
    """

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        fetcher: Optional[FeedFetcher] = None,
        parser: Optional[FeedParser] = None,
        cache: Optional[CalendarWindowCache] = None,
    ):
        self.settings = settings or FeedSettings()
        self.feed_url = build_feed_url(self.settings.calendar_id)
        self.fetcher = fetcher or FeedFetcher(self.settings)
        self.parser = parser or FeedParser(self.settings)
        self.cache = cache or CalendarWindowCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            max_entries=self.settings.cache_max_entries,
        )

    @property
    def timezone(self) -> str:
        return self.settings.timezone

    def resolve(
        self,
        start_date_key: Optional[str] = None,
        end_date_key: Optional[str] = None,
        now: Optional[datetime.datetime] = None,
    ) -> CalendarWindow:
        """Resolve the window for the given bounds relative to ``now``."""
        today = today_date_key(now, self.settings.timezone)
        return resolve_window(
            today,
            start_date_key,
            end_date_key,
            past_days=self.settings.window_past_days,
            future_days=self.settings.window_future_days,
        )

    async def get_calendar_events_window(
        self,
        start_date_key: Optional[str] = None,
        end_date_key: Optional[str] = None,
        now: Optional[datetime.datetime] = None,
    ) -> CalendarEventsWindowResult:
        """Return the ordered items for a window plus the bounds actually used.

        Never raises for upstream or feed problems: those are logged and
        yield an empty item list that is not cached.

        Args:
            start_date_key: Optional ``YYYY-MM-DD`` start (malformed = absent)
            end_date_key: Optional ``YYYY-MM-DD`` end (malformed = absent)
            now: Optional instant standing in for the current time

        Returns:
            CalendarEventsWindowResult
        """
        window = self.resolve(start_date_key, end_date_key, now)

        if window.is_empty:
            return CalendarEventsWindowResult(
                items=(),
                range_start_date_key=window.start_date_key,
                range_end_date_key=window.end_date_key,
            )

        key = CacheKey(self.feed_url, window.start_date_key, window.end_date_key)
        items = await self.cache.get_or_load(key, lambda: self._load_window(window))
        return CalendarEventsWindowResult(
            items=items,
            range_start_date_key=window.start_date_key,
            range_end_date_key=window.end_date_key,
        )

    async def _load_window(self, window: CalendarWindow) -> list[CalendarEventItem]:
        """Fetch, expand and format one window. Raises on any failure."""
        response = await self.fetcher.fetch_feed(self.feed_url)
        items = self.parser.parse_window(
            response.content or "", window, buffer_days=self.settings.boundary_buffer_days
        )
        logger.info(
            "Loaded %d calendar items for %s..%s",
            len(items),
            window.start_date_key,
            window.end_date_key,
        )
        return items
