"""Time-boxed cache with request coalescing for resolved calendar windows.

Entries are keyed by ``(feed URL, start date key, end date key)`` and live
for a fixed TTL. Concurrent requests for a key that has no fresh entry share
a single in-flight load: the first caller starts it, later callers attach to
it. All bookkeeping runs on one event loop and never awaits between reading
and updating the maps, so every registry update is atomic for other callers.

Example:
    cache = CalendarWindowCache(ttl_seconds=30)
    items = await cache.get_or_load(key, lambda: load_items(window))
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional

from ..calendar.models import CalendarEventItem

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0
DEFAULT_MAX_ENTRIES = 128

Loader = Callable[[], Awaitable[Sequence[CalendarEventItem]]]


class CacheKey(NamedTuple):
    """Composite cache key; different windows of one feed never share entries."""

    feed_id: str
    start_date_key: str
    end_date_key: str

    def __str__(self) -> str:
        return f"{self.feed_id}|{self.start_date_key}|{self.end_date_key}"


@dataclass(frozen=True)
class CacheEntry:
    """Items for one window, valid for reads while ``expires_at`` is in the future."""

    items: tuple[CalendarEventItem, ...]
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return self.expires_at > now


class CalendarWindowCache:
    """Read-through TTL cache with single-flight loading.

    Failed loads are not cached: waiters attached to a failed load receive
    an empty tuple and the next request starts a new load immediately.
    Cancelling one waiter leaves the shared load running. If the shared
    load task itself is cancelled (for example at event loop shutdown),
    every attached waiter gets ``asyncio.CancelledError``.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize cache.

        Args:
            ttl_seconds: Lifetime of a successful load
            max_entries: Maximum number of entries (FIFO eviction when full)
            clock: Monotonic clock in seconds; defaults to time.monotonic
        """
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock or time.monotonic
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._in_flight: dict[CacheKey, asyncio.Task] = {}
        self.stats = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "fetches": 0,
            "failures": 0,
            "evictions": 0,
        }

    async def get_or_load(self, key: CacheKey, loader: Loader) -> tuple[CalendarEventItem, ...]:
        """Return cached items for ``key`` or load them exactly once.

        Cancelling the awaiting caller does not cancel the shared load; it
        keeps running for other waiters and still populates the cache.

        Args:
            key: Cache key for the window
            loader: Coroutine factory producing the items; may raise

        Returns:
            Items for the window (empty if the load failed)
        """
        now = self._clock()
        self.evict_expired(now)

        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(now):
            self.stats["hits"] += 1
            logger.debug("Cache hit for %s", key)
            return entry.items

        task = self._in_flight.get(key)
        if task is None or task.done():
            self.stats["misses"] += 1
            logger.debug("Cache miss for %s, starting load", key)
            task = asyncio.create_task(self._run_load(key, loader))
            task.add_done_callback(lambda done, key=key: self._forget_load(key, done))
            self._in_flight[key] = task
        else:
            self.stats["coalesced"] += 1
            logger.debug("Attaching to in-flight load for %s", key)

        return await asyncio.shield(task)

    async def _run_load(self, key: CacheKey, loader: Loader) -> tuple[CalendarEventItem, ...]:
        self.stats["fetches"] += 1
        try:
            items = tuple(await loader())
        except Exception:
            self.stats["failures"] += 1
            logger.warning("Calendar load failed for %s; serving empty result", key, exc_info=True)
            return ()
        else:
            self._store(key, items)
            return items

    def _forget_load(self, key: CacheKey, task: asyncio.Task) -> None:
        # Runs for finished and cancelled loads alike
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def _store(self, key: CacheKey, items: tuple[CalendarEventItem, ...]) -> None:
        # Replaced wholesale, never mutated in place
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(items=items, expires_at=self._clock() + self.ttl_seconds)
        logger.debug("Cached %d items for %s (ttl=%.1fs)", len(items), key, self.ttl_seconds)

        while len(self._entries) > self.max_entries:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
            self.stats["evictions"] += 1
            logger.debug("Evicted oldest cache entry: %s", oldest_key)

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop entries whose expiry has passed.

        Returns:
            Number of entries removed
        """
        if now is None:
            now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self.stats["evictions"] += len(expired)
            logger.debug("Evicted %d expired cache entries", len(expired))
        return len(expired)

    def peek(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the stored entry for ``key`` without touching statistics."""
        return self._entries.get(key)

    def is_loading(self, key: CacheKey) -> bool:
        return key in self._in_flight

    def clear(self) -> None:
        """Drop all cached entries. In-flight loads are left alone."""
        self._entries.clear()
        logger.info("Calendar window cache cleared")

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {
            **self.stats,
            "current_size": len(self._entries),
            "in_flight": len(self._in_flight),
            "ttl_seconds": self.ttl_seconds,
        }
