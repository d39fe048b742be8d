"""Data models for calendar feed processing."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.date_keys import date_key_for_instant


class CalendarEventItem(BaseModel):
    """One concrete calendar occurrence as returned to the application.

    Serialized with camelCase keys (``startAt``, ``isAllDay``, ``daysOffset``)
    via ``model_dump(by_alias=True)``.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Source UID combined with the occurrence start instant")
    title: str
    start_at: str = Field(..., description="UTC ISO 8601 start instant")
    end_at: Optional[str] = None
    is_all_day: bool = False
    location: Optional[str] = None
    description: Optional[str] = None
    days_offset: int = Field(..., description="Whole days from today to the start date key")


class CalendarEventsWindowResult(BaseModel):
    """Result of resolving one calendar window."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    items: tuple[CalendarEventItem, ...] = ()
    range_start_date_key: str
    range_end_date_key: str

    def to_json_dict(self) -> dict:
        """Return the JSON payload shape used by the HTTP API."""
        return {
            "items": [item.model_dump(by_alias=True) for item in self.items],
            "rangeStartDateKey": self.range_start_date_key,
            "rangeEndDateKey": self.range_end_date_key,
        }


class FeedResponse(BaseModel):
    """Response from a feed fetch."""

    success: bool
    content: Optional[str] = None
    status_code: Optional[int] = None
    headers: dict[str, str] = Field(default_factory=dict)


@dataclass
class FeedOccurrence:
    """A concrete occurrence produced by parsing or recurrence expansion.

    ``summary`` is the occurrence's own summary; ``parent_summary`` is the
    series master's summary (None for standalone events).
    """

    uid: str
    start: datetime
    end: Optional[datetime]
    is_all_day: bool
    summary: Optional[str] = None
    parent_summary: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").upper() == "CANCELLED"

    def start_date_key(self, tz) -> str:
        """Date key of the start instant in the configured zone."""
        return date_key_for_instant(self.start, tz)
