"""RRULE expansion for groupcal feed parsing.

Any standards-compliant recurrence evaluator can sit behind
``RRuleExpander.expand``; this one is built on ``dateutil.rrule``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from dateutil.rrule import rruleset, rrulestr

logger = logging.getLogger(__name__)

_UNTIL_RE = re.compile(r"UNTIL=([0-9]{8}(?:T[0-9]{6}Z?)?)", re.IGNORECASE)


class RRuleExpansionError(Exception):
    """Raised when a recurrence rule cannot be evaluated."""


@dataclass
class RRuleExpanderConfig:
    """Configuration for RRULE expansion."""

    max_occurrences_per_rule: int = 500

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleExpanderConfig":
        """Extract RRULE configuration from a settings object (or None)."""
        return cls(
            max_occurrences_per_rule=int(getattr(settings, "max_occurrences_per_rule", 500)),
        )


def _format_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def normalize_until(rule_text: str, dtstart: datetime) -> str:
    """Rewrite UNTIL so it is a UTC date-time compatible with an aware DTSTART.

    dateutil refuses to mix an aware DTSTART with a floating or date-only
    UNTIL. A date-only UNTIL includes the whole of that day in DTSTART's zone;
    a floating UNTIL is read in DTSTART's zone.
    """
    if dtstart.tzinfo is None:
        return rule_text

    def _replace(match: re.Match) -> str:
        raw = match.group(1).upper()
        if raw.endswith("Z"):
            return f"UNTIL={raw}"
        if len(raw) == 8:
            until = datetime(
                int(raw[0:4]), int(raw[4:6]), int(raw[6:8]), 23, 59, 59, tzinfo=dtstart.tzinfo
            )
        else:
            until = datetime.strptime(raw, "%Y%m%dT%H%M%S").replace(tzinfo=dtstart.tzinfo)
        return f"UNTIL={_format_utc(until)}"

    return _UNTIL_RE.sub(_replace, rule_text)


class RRuleExpander:
    """Expands recurrence rules into concrete start instants inside a window."""

    def __init__(self, settings: Any = None):
        """Initialize expander.

        Args:
            settings: Optional settings object providing ``max_occurrences_per_rule``
        """
        config = RRuleExpanderConfig.from_settings(settings)
        self.max_occurrences = config.max_occurrences_per_rule

    def build_ruleset(
        self,
        dtstart: datetime,
        rules: Iterable[str],
        exdates: Iterable[datetime] = (),
        rdates: Iterable[datetime] = (),
    ) -> rruleset:
        """Build a dateutil rruleset from RRULE values, EXDATEs and RDATEs.

        Raises:
            RRuleExpansionError: If a rule cannot be parsed
        """
        lines = [f"RRULE:{normalize_until(rule, dtstart)}" for rule in rules if rule]
        if not lines:
            raise RRuleExpansionError("No RRULE values supplied")

        try:
            rule_set = rrulestr("\n".join(lines), dtstart=dtstart, forceset=True)
        except (ValueError, TypeError) as e:
            raise RRuleExpansionError(f"Invalid RRULE {lines!r}: {e}") from e

        for rdate in rdates:
            rule_set.rdate(rdate)
        for exdate in exdates:
            rule_set.exdate(exdate)
        return rule_set

    def expand(
        self,
        dtstart: datetime,
        rules: Iterable[str],
        window_start: datetime,
        window_end: datetime,
        exdates: Iterable[datetime] = (),
        rdates: Iterable[datetime] = (),
    ) -> list[datetime]:
        """Return occurrence starts in ``[window_start, window_end)``.

        Args:
            dtstart: Aware series start
            rules: RRULE values (without the ``RRULE:`` prefix)
            window_start: Inclusive lower bound (aware)
            window_end: Exclusive upper bound (aware)
            exdates: Aware instants to exclude
            rdates: Aware instants to add

        Returns:
            Occurrence starts in chronological order, capped at
            ``max_occurrences_per_rule``

        Raises:
            RRuleExpansionError: If the rule cannot be evaluated
        """
        rule_set = self.build_ruleset(dtstart, rules, exdates, rdates)

        occurrences: list[datetime] = []
        try:
            for occurrence in rule_set.between(window_start, window_end, inc=True):
                if occurrence >= window_end:
                    continue
                occurrences.append(occurrence)
                if len(occurrences) >= self.max_occurrences:
                    logger.warning(
                        "RRULE expansion capped at %d occurrences (dtstart=%s)",
                        self.max_occurrences,
                        dtstart.isoformat(),
                    )
                    break
        except (ValueError, TypeError) as e:
            raise RRuleExpansionError(f"Failed to expand RRULE: {e}") from e

        logger.debug(
            "Expanded RRULE from %s into %d occurrences in [%s, %s)",
            dtstart.isoformat(),
            len(occurrences),
            window_start.isoformat(),
            window_end.isoformat(),
        )
        return occurrences


def as_datetime(value: date | datetime, tz: Any) -> datetime:
    """Anchor an iCalendar date or date-time to an aware datetime.

    Dates become local midnight in ``tz``; floating date-times are read in ``tz``.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=tz)
    return datetime(value.year, value.month, value.day, tzinfo=tz)
