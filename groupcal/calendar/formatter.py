"""Conversion of feed occurrences into output items, and their ordering."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from typing import Optional

from ..core.date_keys import ZoneLike, diff_days
from .models import CalendarEventItem, FeedOccurrence

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TITLE = "Event"


def to_iso_instant(value: datetime.datetime) -> str:
    """Format an instant as UTC ISO 8601 with milliseconds and a ``Z`` suffix.

    Fixed width and a single zone make these strings sort chronologically.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    utc_value = value.astimezone(datetime.timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def occurrence_id(uid: str, start: datetime.datetime) -> str:
    """Stable ID for one occurrence: ``<uid>:<start ISO>``."""
    return f"{uid}:{to_iso_instant(start)}"


def _clean_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    return str(value).strip()


def resolve_title(occurrence: FeedOccurrence) -> str:
    """Occurrence summary, then parent summary, then the generic label."""
    return (
        _clean_text(occurrence.summary)
        or _clean_text(occurrence.parent_summary)
        or DEFAULT_EVENT_TITLE
    )


def build_item(
    occurrence: FeedOccurrence,
    today_date_key: str,
    tz: ZoneLike,
) -> CalendarEventItem:
    """Build the output item for an occurrence relative to ``today_date_key``."""
    start_key = occurrence.start_date_key(tz)
    return CalendarEventItem(
        id=occurrence_id(occurrence.uid, occurrence.start),
        title=resolve_title(occurrence),
        start_at=to_iso_instant(occurrence.start),
        end_at=to_iso_instant(occurrence.end) if occurrence.end is not None else None,
        is_all_day=occurrence.is_all_day,
        location=_clean_text(occurrence.location) or None,
        description=_clean_text(occurrence.description) or None,
        days_offset=diff_days(today_date_key, start_key),
    )


def proximity_sort_key(item: CalendarEventItem) -> tuple[int, int, str]:
    """Sort key: distance from today, then future before past, then start.

    ``-days_offset`` puts "in 2 days" ahead of "2 days ago" at equal distance.
    """
    return (abs(item.days_offset), -item.days_offset, item.start_at)


def sort_items(items: Iterable[CalendarEventItem]) -> list[CalendarEventItem]:
    """Return items ordered by proximity to today (stable)."""
    return sorted(items, key=proximity_sort_key)
