"""Calendar window resolution.

Turns optional caller-supplied bounds into the exact ``[start, end]`` date-key
window used for filtering, and into the buffered instant range used for the
upstream fetch and recurrence expansion.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.date_keys import (
    DEFAULT_TIMEZONE,
    ZoneLike,
    add_days,
    parse_date_key,
    to_instant_range,
)

logger = logging.getLogger(__name__)

DEFAULT_PAST_DAYS = 0
DEFAULT_FUTURE_DAYS = 14
DEFAULT_BOUNDARY_BUFFER_DAYS = 1


@dataclass(frozen=True)
class CalendarWindow:
    """A resolved window of date keys.

    ``is_empty`` is set when the resolved start is later than the end; such a
    window short-circuits to no items without touching the cache or network.
    """

    start_date_key: str
    end_date_key: str
    today_date_key: str

    @property
    def is_empty(self) -> bool:
        # ISO date keys compare chronologically as strings
        return self.start_date_key > self.end_date_key

    def contains(self, date_key: str) -> bool:
        return self.start_date_key <= date_key <= self.end_date_key

    def fetch_boundary(
        self,
        tz: ZoneLike = DEFAULT_TIMEZONE,
        buffer_days: int = DEFAULT_BOUNDARY_BUFFER_DAYS,
    ) -> tuple[datetime.datetime, datetime.datetime]:
        """Return the buffered ``[from, to)`` instant range for expansion.

        The buffer absorbs occurrences whose nominal date shifts across a
        window edge under zone conversion. It is only used for the upstream
        expansion step; final filtering uses the exact date keys.
        """
        buffer_days = max(0, buffer_days)
        expand_from, _ = to_instant_range(add_days(self.start_date_key, -buffer_days), tz)
        _, expand_to = to_instant_range(add_days(self.end_date_key, buffer_days), tz)
        return expand_from, expand_to


def resolve_window(
    today_date_key: str,
    start_date_key: Optional[str] = None,
    end_date_key: Optional[str] = None,
    past_days: int = DEFAULT_PAST_DAYS,
    future_days: int = DEFAULT_FUTURE_DAYS,
) -> CalendarWindow:
    """Resolve the date-key window for a request.

    Malformed bounds are treated as absent and replaced by defaults: the
    start defaults to ``today - past_days`` and the end to
    ``today + future_days``. Never raises for caller input.

    Args:
        today_date_key: Today's date key in the configured zone
        start_date_key: Optional caller-supplied start
        end_date_key: Optional caller-supplied end
        past_days: Default days before today
        future_days: Default days after today

    Returns:
        The resolved CalendarWindow (possibly empty)
    """
    start = parse_date_key(start_date_key)
    end = parse_date_key(end_date_key)

    if start_date_key is not None and start is None:
        logger.debug("Ignoring malformed start date key %r", start_date_key)
    if end_date_key is not None and end is None:
        logger.debug("Ignoring malformed end date key %r", end_date_key)

    window = CalendarWindow(
        start_date_key=start or add_days(today_date_key, -past_days),
        end_date_key=end or add_days(today_date_key, future_days),
        today_date_key=today_date_key,
    )
    if window.is_empty:
        logger.debug(
            "Resolved window is empty (%s > %s)", window.start_date_key, window.end_date_key
        )
    return window
