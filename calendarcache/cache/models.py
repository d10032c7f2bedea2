"""Database models for events, materialized instances and cache window state."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..recurrence.duration import MILLIS_PER_DAY, parse_duration
from ..recurrence.exceptions import DurationParseError

logger = logging.getLogger(__name__)


class EventStatus(str, Enum):
    """Event status values."""

    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class WindowStatus(str, Enum):
    """Observed state of the cache window relative to the local timezone."""

    EMPTY = "empty"
    STALE_TIMEZONE = "stale_timezone"
    COVERS = "covers"


class Event(BaseModel):
    """Calendar event row as stored in the events table.

    Instants are epoch milliseconds. ``duration`` is an RFC 5545 duration
    string and ``last_date`` is None when the event has no bounded end.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    sync_id: Optional[str] = None
    calendar_id: int = 1
    title: Optional[str] = None

    # Time information
    dtstart: Optional[int] = None
    dtend: Optional[int] = None
    duration: Optional[str] = None
    event_timezone: Optional[str] = None
    all_day: bool = False

    # Recurrence
    rrule: Optional[str] = None
    rdate: Optional[str] = None
    exrule: Optional[str] = None
    exdate: Optional[str] = None

    # Recurrence exception
    original_event: Optional[str] = None
    original_instance_time: Optional[int] = None

    status: EventStatus = EventStatus.CONFIRMED
    last_date: Optional[int] = None

    @property
    def is_recurring(self) -> bool:
        """True when the event defines occurrences through RRULE or RDATE."""
        return bool(self.rrule or self.rdate)

    @property
    def is_exception(self) -> bool:
        """True when the event overrides one occurrence of another event."""
        return bool(self.original_event) and self.original_instance_time is not None

    @property
    def is_recurrence_event(self) -> bool:
        """True for recurring events and for exceptions to recurring events."""
        return self.is_recurring or bool(self.original_event)

    @property
    def is_cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED

    @property
    def family_key(self) -> Optional[str]:
        """Sync id shared by a recurrence and its exceptions."""
        return self.original_event or self.sync_id

    def effective_duration_ms(self) -> int:
        """Duration applied to every occurrence of this event.

        An explicit duration wins. Recurring all-day events without one last a
        day, otherwise the span to ``dtend`` is used, and the fallback is zero.
        A malformed duration counts as zero.
        """
        if self.duration:
            try:
                return max(0, parse_duration(self.duration))
            except DurationParseError:
                logger.warning(
                    f"Bad duration '{self.duration}' on event {self.id}, treating as zero"
                )
                return 0

        if self.is_recurring and self.all_day:
            return MILLIS_PER_DAY
        if self.dtend is not None and self.dtstart is not None:
            return max(0, self.dtend - self.dtstart)
        return 0

    @classmethod
    def from_row(cls, row: Any) -> "Event":
        """Build an event from an ``aiosqlite.Row`` of the events table."""
        return cls(
            id=row["id"],
            sync_id=row["sync_id"],
            calendar_id=row["calendar_id"],
            title=row["title"],
            dtstart=row["dtstart"],
            dtend=row["dtend"],
            duration=row["duration"],
            event_timezone=row["event_timezone"],
            all_day=bool(row["all_day"]),
            rrule=row["rrule"],
            rdate=row["rdate"],
            exrule=row["exrule"],
            exdate=row["exdate"],
            original_event=row["original_event"],
            original_instance_time=row["original_instance_time"],
            status=EventStatus(row["status"]),
            last_date=row["last_date"],
        )


class Instance(BaseModel):
    """One materialized occurrence with its projected day/minute fields."""

    model_config = ConfigDict(frozen=True)

    event_id: int
    begin: int
    end: int
    start_day: int
    end_day: int
    start_minute: int
    end_minute: int


class InstanceRow(Instance):
    """Instance joined with the event fields callers usually need."""

    sync_id: Optional[str] = None
    calendar_id: int = 1
    title: Optional[str] = None
    all_day: bool = False
    status: EventStatus = EventStatus.CONFIRMED
    event_timezone: Optional[str] = None

    @property
    def begin_dt(self) -> datetime:
        """Get instance start as an aware UTC datetime."""
        return datetime.fromtimestamp(self.begin / 1000, tz=timezone.utc)

    @property
    def end_dt(self) -> datetime:
        """Get instance end as an aware UTC datetime."""
        return datetime.fromtimestamp(self.end / 1000, tz=timezone.utc)

    @classmethod
    def from_row(cls, row: Any) -> "InstanceRow":
        return cls(
            event_id=row["event_id"],
            begin=row["begin_ms"],
            end=row["end_ms"],
            start_day=row["start_day"],
            end_day=row["end_day"],
            start_minute=row["start_minute"],
            end_minute=row["end_minute"],
            sync_id=row["sync_id"],
            calendar_id=row["calendar_id"],
            title=row["title"],
            all_day=bool(row["all_day"]),
            status=EventStatus(row["status"]),
            event_timezone=row["event_timezone"],
        )


class CacheWindowState(BaseModel):
    """Persisted description of the materialized window.

    ``max_instance == 0`` means nothing has been materialized. Otherwise every
    instance overlapping ``[min_instance, max_instance]`` is present and its
    time fields were computed for ``timezone``.
    """

    timezone: Optional[str] = None
    min_instance: int = 0
    max_instance: int = 0
    updated_at: Optional[str] = Field(default=None, description="Last write time (ISO)")

    @property
    def is_empty(self) -> bool:
        return self.max_instance == 0

    def status(self, local_timezone: str) -> WindowStatus:
        """Classify the window against the current local timezone."""
        if self.is_empty:
            return WindowStatus.EMPTY
        if self.timezone != local_timezone:
            return WindowStatus.STALE_TIMEZONE
        return WindowStatus.COVERS

    def covers(self, begin: int, end: int) -> bool:
        """True when ``[begin, end]`` lies inside the materialized window."""
        return not self.is_empty and begin >= self.min_instance and end <= self.max_instance
