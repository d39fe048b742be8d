"""Date-key utilities for groupcal.

A date key is a ``YYYY-MM-DD`` string naming one calendar day in a single,
configured time zone. All window and offset arithmetic in the calendar
service goes through these helpers so that "today", window bounds and
``daysOffset`` values agree with each other.
"""

from __future__ import annotations

import datetime
import logging
import re
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# Zone used when nothing else is configured (EST - Indiana)
DEFAULT_TIMEZONE = "America/Indiana/Indianapolis"

_DATE_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

ZoneLike = Union[str, ZoneInfo]


@lru_cache(maxsize=32)
def _zone_for_name(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def get_zone(tz: ZoneLike = DEFAULT_TIMEZONE) -> ZoneInfo:
    """Return a ZoneInfo for a zone name or pass a ZoneInfo through.

    Args:
        tz: IANA zone name or ZoneInfo instance

    Returns:
        ZoneInfo instance

    Raises:
        zoneinfo.ZoneInfoNotFoundError: If the zone name is unknown
    """
    if isinstance(tz, ZoneInfo):
        return tz
    return _zone_for_name(tz)


def _parse_parts(value: str) -> Optional[datetime.date]:
    match = _DATE_KEY_RE.match(value)
    if not match:
        return None
    try:
        return datetime.date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        # 2024-02-30 and friends
        return None


def parse_date_key(value: Optional[str]) -> Optional[str]:
    """Leniently normalize a caller-supplied date key.

    Surrounding whitespace is ignored. Anything that is not a real calendar
    day in ``YYYY-MM-DD`` form yields None instead of raising.

    Args:
        value: Raw value (may be None)

    Returns:
        Normalized date key or None
    """
    if not value or not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    parsed = _parse_parts(normalized)
    if parsed is None:
        return None
    return parsed.isoformat()


def is_valid_date_key(value: Optional[str]) -> bool:
    """Return True when value is already a canonical date key."""
    return value is not None and parse_date_key(value) == value


def date_from_key(date_key: str) -> datetime.date:
    """Convert a date key to a date.

    Raises:
        ValueError: If the key is not a valid ``YYYY-MM-DD`` calendar day
    """
    parsed = _parse_parts(date_key)
    if parsed is None:
        raise ValueError(f"Invalid date key: {date_key}")
    return parsed


def date_key_for_instant(instant: datetime.datetime, tz: ZoneLike = DEFAULT_TIMEZONE) -> str:
    """Return the date key of an absolute instant as seen in the configured zone.

    Naive datetimes are treated as UTC.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=datetime.timezone.utc)
    return instant.astimezone(get_zone(tz)).date().isoformat()


def today_date_key(
    now: Optional[datetime.datetime] = None, tz: ZoneLike = DEFAULT_TIMEZONE
) -> str:
    """Return today's date key in the configured zone.

    Args:
        now: Optional instant standing in for the current time
        tz: Configured zone
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    return date_key_for_instant(now, tz)


def add_days(date_key: str, days: int) -> str:
    """Shift a date key by a number of days (month and year rollover included)."""
    return (date_from_key(date_key) + datetime.timedelta(days=days)).isoformat()


def diff_days(from_date_key: str, to_date_key: str) -> int:
    """Return ``to - from`` in whole days; positive when ``to`` is later."""
    return (date_from_key(to_date_key) - date_from_key(from_date_key)).days


def start_of_day(date_key: str, tz: ZoneLike = DEFAULT_TIMEZONE) -> datetime.datetime:
    """Return the aware instant at which the given day begins in the zone."""
    day = date_from_key(date_key)
    return datetime.datetime(day.year, day.month, day.day, tzinfo=get_zone(tz))


def to_instant_range(
    date_key: str, tz: ZoneLike = DEFAULT_TIMEZONE
) -> tuple[datetime.datetime, datetime.datetime]:
    """Return ``[start, next_day_start)`` bounding the calendar day in the zone.

    Both bounds are converted to UTC. On DST transition days the range is
    23 or 25 hours long.
    """
    start = start_of_day(date_key, tz)
    end = start_of_day(add_days(date_key, 1), tz)
    return start.astimezone(datetime.timezone.utc), end.astimezone(datetime.timezone.utc)
