"""iCalendar feed parsing and occurrence building for groupcal.

Parsing happens in two passes:

1. ``parse_feed`` turns raw feed text into a flat list of ``FeedOccurrence``
   values: series masters are expanded inside the buffered fetch boundary,
   RECURRENCE-ID overrides replace the instances they target, EXDATEs are
   honored and cancelled series are dropped.
2. ``build_items`` filters those occurrences to the exact window, computes
   ``daysOffset``, drops duplicate IDs and sorts the result.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, cast

from icalendar import Calendar
from icalendar import Event as ICalEvent

from ..core.date_keys import DEFAULT_TIMEZONE, ZoneLike, get_zone
from .formatter import build_item, sort_items
from .models import CalendarEventItem, FeedOccurrence
from .rrule_expander import RRuleExpander, RRuleExpansionError, as_datetime
from .window import CalendarWindow

logger = logging.getLogger(__name__)


class FeedParseError(Exception):
    """Raised when feed text cannot be parsed as an iCalendar document."""


def _text(component: ICalEvent, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _date_values(component: ICalEvent, name: str) -> list[date | datetime]:
    """Collect EXDATE/RDATE style values, which may repeat and hold lists."""
    prop = component.get(name)
    if prop is None:
        return []
    props = prop if isinstance(prop, list) else [prop]
    values: list[date | datetime] = []
    for item in props:
        for entry in getattr(item, "dts", []):
            dt = getattr(entry, "dt", None)
            # PERIOD values come through as tuples; they carry no single start
            if isinstance(dt, (date, datetime)):
                values.append(dt)
    return values


def _rules(component: ICalEvent) -> list[str]:
    prop = component.get("RRULE")
    if prop is None:
        return []
    props = prop if isinstance(prop, list) else [prop]
    return [p.to_ical().decode("utf-8") for p in props]


def _utc_key(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


class _SourceEvent:
    """Normalized view of one VEVENT component."""

    def __init__(self, component: ICalEvent, tz: Any):
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise ValueError("VEVENT without DTSTART")
        raw_start = dtstart.dt
        self.component = component
        self.is_all_day = not isinstance(raw_start, datetime)
        self.start = as_datetime(raw_start, tz)
        self.duration = self._resolve_duration(component, tz)
        self.uid = _text(component, "UID") or self._fallback_uid(component)
        self.summary = _text(component, "SUMMARY")
        self.location = _text(component, "LOCATION")
        self.description = _text(component, "DESCRIPTION")
        self.status = _text(component, "STATUS")
        self.rules = _rules(component)
        recurrence_id = component.get("RECURRENCE-ID")
        self.recurrence_id: Optional[datetime] = (
            as_datetime(recurrence_id.dt, tz) if recurrence_id is not None else None
        )
        self.exdates = [as_datetime(v, tz) for v in _date_values(component, "EXDATE")]
        self.rdates = [as_datetime(v, tz) for v in _date_values(component, "RDATE")]

    def _resolve_duration(self, component: ICalEvent, tz: Any) -> Optional[timedelta]:
        dtend = component.get("DTEND")
        if dtend is not None:
            return as_datetime(dtend.dt, tz) - self.start
        duration = component.get("DURATION")
        if duration is not None and isinstance(duration.dt, timedelta):
            return duration.dt
        if self.is_all_day:
            return timedelta(days=1)
        return None

    @staticmethod
    def _fallback_uid(component: ICalEvent) -> str:
        # Stable across fetches of the same feed content
        return "generated-" + hashlib.sha1(component.to_ical()).hexdigest()[:16]

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").upper() == "CANCELLED"

    def end_for(self, start: datetime, parent: Optional["_SourceEvent"] = None) -> Optional[datetime]:
        duration = self.duration
        if duration is None and parent is not None:
            duration = parent.duration
        return start + duration if duration is not None else None

    def to_occurrence(
        self, parent: Optional["_SourceEvent"] = None, start: Optional[datetime] = None
    ) -> FeedOccurrence:
        """Occurrence of this event, optionally at a rule-generated start."""
        occurrence_start = start or self.start
        return FeedOccurrence(
            uid=parent.uid if parent is not None else self.uid,
            start=occurrence_start,
            end=self.end_for(occurrence_start, parent),
            is_all_day=self.is_all_day,
            summary=self.summary,
            parent_summary=parent.summary if parent is not None else None,
            location=self.location,
            description=self.description,
            status=self.status,
        )


class FeedParser:
    """Parses iCalendar feeds into occurrences and window-filtered items."""

    def __init__(
        self,
        settings: Any = None,
        expander: Optional[RRuleExpander] = None,
        tz: ZoneLike = DEFAULT_TIMEZONE,
    ):
        """Initialize parser.

        Args:
            settings: Optional settings object (passed to the RRULE expander)
            expander: Recurrence evaluator; defaults to RRuleExpander(settings)
            tz: Configured zone for floating and all-day values
        """
        self.settings = settings
        self.expander = expander or RRuleExpander(settings)
        self.zone = get_zone(getattr(settings, "timezone", None) or tz)

    def load_calendar(self, ics_content: str) -> Calendar:
        """Parse feed text into an icalendar Calendar.

        Raises:
            FeedParseError: If the text is empty or not an iCalendar document
        """
        if not ics_content or not ics_content.strip():
            raise FeedParseError("Empty feed content")
        if "BEGIN:VCALENDAR" not in ics_content.upper():
            raise FeedParseError("Feed content is not an iCalendar document")
        try:
            calendar = Calendar.from_ical(ics_content)
        except Exception as e:
            raise FeedParseError(f"Failed to parse feed: {e}") from e
        if getattr(calendar, "name", None) != "VCALENDAR":
            raise FeedParseError("Feed did not contain a VCALENDAR component")
        return cast("Calendar", calendar)

    def _collect_sources(
        self, calendar: Calendar
    ) -> tuple[list[_SourceEvent], dict[str, list[_SourceEvent]]]:
        masters: list[_SourceEvent] = []
        overrides: dict[str, list[_SourceEvent]] = {}

        for component in calendar.walk("VEVENT"):
            try:
                source = _SourceEvent(cast("ICalEvent", component), self.zone)
            except (ValueError, TypeError) as e:
                logger.warning("Skipping unreadable VEVENT: %s", e)
                continue
            if source.recurrence_id is not None:
                overrides.setdefault(source.uid, []).append(source)
            else:
                masters.append(source)
        return masters, overrides

    def _series_starts(
        self, master: _SourceEvent, expand_from: datetime, expand_to: datetime
    ) -> list[datetime]:
        if not master.rules:
            # RDATE-only series
            excluded = {_utc_key(e) for e in master.exdates}
            return sorted(
                {
                    s
                    for s in [master.start, *master.rdates]
                    if expand_from <= s < expand_to and _utc_key(s) not in excluded
                }
            )
        return self.expander.expand(
            master.start,
            master.rules,
            expand_from,
            expand_to,
            exdates=master.exdates,
            rdates=master.rdates,
        )

    def _expand_series(
        self,
        master: _SourceEvent,
        overrides: list[_SourceEvent],
        expand_from: datetime,
        expand_to: datetime,
    ) -> list[FeedOccurrence]:
        by_instant = {_utc_key(o.recurrence_id): o for o in overrides if o.recurrence_id}
        occurrences: list[FeedOccurrence] = []
        emitted: set[datetime] = set()

        starts = self._series_starts(master, expand_from, expand_to)
        for start in starts:
            override = by_instant.get(_utc_key(start))
            if override is not None:
                emitted.add(_utc_key(start))
                occurrences.append(override.to_occurrence(parent=master))
            else:
                occurrences.append(master.to_occurrence(start=start))

        # Overrides moved into the boundary from an original instant outside it
        for key, override in by_instant.items():
            if key in emitted:
                continue
            if expand_from <= override.start < expand_to:
                occurrences.append(override.to_occurrence(parent=master))
        return occurrences

    def parse_feed(
        self, ics_content: str, expand_from: datetime, expand_to: datetime
    ) -> list[FeedOccurrence]:
        """Parse feed text into concrete occurrences.

        Args:
            ics_content: Raw iCalendar text
            expand_from: Inclusive start of the buffered expansion boundary
            expand_to: Exclusive end of the buffered expansion boundary

        Returns:
            Occurrences (cancelled series removed; cancelled single
            occurrences are kept and flagged so callers can drop them)

        Raises:
            FeedParseError: If the feed text cannot be parsed
        """
        calendar = self.load_calendar(ics_content)
        masters, overrides = self._collect_sources(calendar)
        master_uids = {m.uid for m in masters}

        occurrences: list[FeedOccurrence] = []
        for master in masters:
            if master.is_cancelled:
                logger.debug("Skipping cancelled series %s", master.uid)
                continue
            if not master.rules and not master.rdates:
                occurrences.append(master.to_occurrence())
                continue
            try:
                occurrences.extend(
                    self._expand_series(
                        master, overrides.get(master.uid, []), expand_from, expand_to
                    )
                )
            except RRuleExpansionError as e:
                logger.warning("Skipping series %s: %s", master.uid, e)

        # Overrides whose master is not in the feed stand on their own
        for uid, orphans in overrides.items():
            if uid in master_uids:
                continue
            occurrences.extend(o.to_occurrence() for o in orphans)

        logger.debug(
            "Parsed %d occurrences from %d series (%d overridden UIDs)",
            len(occurrences),
            len(masters),
            len(overrides),
        )
        return occurrences

    def build_items(
        self, occurrences: Iterable[FeedOccurrence], window: CalendarWindow
    ) -> list[CalendarEventItem]:
        """Filter occurrences to the exact window and produce sorted items.

        Cancelled occurrences and occurrences whose start date key falls
        outside ``window`` are dropped; of several occurrences with the same
        ID, the first one wins.
        """
        seen: set[str] = set()
        items: list[CalendarEventItem] = []
        duplicates = 0

        for occurrence in occurrences:
            if occurrence.is_cancelled:
                continue
            if not window.contains(occurrence.start_date_key(self.zone)):
                continue
            item = build_item(occurrence, window.today_date_key, self.zone)
            if item.id in seen:
                duplicates += 1
                continue
            seen.add(item.id)
            items.append(item)

        if duplicates:
            logger.debug("Dropped %d duplicate occurrences", duplicates)
        return sort_items(items)

    def parse_window(
        self,
        ics_content: str,
        window: CalendarWindow,
        buffer_days: int = 1,
    ) -> list[CalendarEventItem]:
        """Parse feed text and return the sorted items for ``window``.

        Raises:
            FeedParseError: If the feed text cannot be parsed
        """
        expand_from, expand_to = window.fetch_boundary(self.zone, buffer_days)
        return self.build_items(self.parse_feed(ics_content, expand_from, expand_to), window)
