"""Event row storage and the queries the expansion engine runs against it."""

import logging
from datetime import tzinfo
from typing import Optional

import aiosqlite

from ..recurrence.exceptions import RecurrenceParseError
from ..recurrence.expander import RecurrenceExpander, RecurrenceSet
from ..timezone.service import TimezoneError, TimezoneService, get_timezone_service
from .exceptions import InvalidEventError
from .models import Event

logger = logging.getLogger(__name__)

_COLUMNS = (
    "sync_id",
    "calendar_id",
    "title",
    "dtstart",
    "dtend",
    "duration",
    "event_timezone",
    "all_day",
    "rrule",
    "rdate",
    "exrule",
    "exdate",
    "original_event",
    "original_instance_time",
    "status",
    "last_date",
)

# Fields that make no sense without a start time
_START_DEPENDENT_FIELDS = (
    "dtend",
    "duration",
    "event_timezone",
    "rrule",
    "rdate",
    "exrule",
    "exdate",
)


class EventStore:
    """Reads and writes rows of the events table.

    Every method takes an open connection so writes can share the caller's
    transaction with instance repair.
    """

    def __init__(
        self,
        expander: Optional[RecurrenceExpander] = None,
        timezone_service: Optional[TimezoneService] = None,
    ):
        self.timezone_service = timezone_service or get_timezone_service()
        self.expander = expander or RecurrenceExpander(self.timezone_service)

    def calculate_last_date(self, event: Event) -> Optional[int]:
        """Last instant any occurrence of the event can cover.

        Returns:
            Epoch millis, or None for an unbounded recurrence or an event with
            no time information at all

        Raises:
            InvalidEventError: If time fields are present without a start
        """
        if event.dtstart is None:
            present = [name for name in _START_DEPENDENT_FIELDS if getattr(event, name)]
            if present:
                raise InvalidEventError(
                    f"DTSTART field missing while {', '.join(present)} set", event.id
                )
            return None

        duration = event.effective_duration_ms()

        if event.is_recurring:
            anchor = self.timezone_service.from_millis(event.dtstart, self.event_timezone(event))
            try:
                last = self.expander.last_occurrence(anchor, RecurrenceSet.from_event(event))
            except RecurrenceParseError as e:
                logger.warning(f"Could not parse recurrence of event {event.id}: {e}")
                return event.dtstart + duration
            if last is None:
                return None
            return last + duration

        return event.dtstart + duration

    def event_timezone(self, event: Event) -> tzinfo:
        """Timezone in which an event's recurrence is evaluated (UTC if all-day or floating)."""
        if event.all_day or not event.event_timezone:
            return self.timezone_service.get_timezone(None)
        try:
            return self.timezone_service.get_timezone(event.event_timezone)
        except TimezoneError:
            logger.warning(f"Unknown timezone '{event.event_timezone}' on event {event.id}, using UTC")
            return self.timezone_service.get_timezone(None)

    def _values(self, event: Event) -> dict:
        values = event.model_dump(include=set(_COLUMNS))
        values["all_day"] = int(event.all_day)
        values["status"] = event.status.value
        return values

    async def insert(self, db: aiosqlite.Connection, event: Event) -> Event:
        """Insert a new event, computing its last date.

        Raises:
            InvalidEventError: If the event has no start
        """
        if event.dtstart is None:
            raise InvalidEventError("DTSTART field missing", event.id)

        stored = event.model_copy(update={"last_date": self.calculate_last_date(event)})
        values = self._values(stored)
        placeholders = ", ".join(f":{name}" for name in _COLUMNS)
        cursor = await db.execute(
            f"INSERT INTO events ({', '.join(_COLUMNS)}) VALUES ({placeholders})",  # noqa: S608
            values,
        )
        stored = stored.model_copy(update={"id": cursor.lastrowid})
        logger.debug(f"Inserted event {stored.id} (sync_id={stored.sync_id})")
        return stored

    async def update(self, db: aiosqlite.Connection, event: Event) -> Event:
        """Replace every column of an existing event row.

        Raises:
            InvalidEventError: If the event has no id or does not exist
        """
        if event.id is None:
            raise InvalidEventError("Cannot update an event without an id")

        stored = event.model_copy(update={"last_date": self.calculate_last_date(event)})
        values = self._values(stored)
        values["id"] = stored.id
        assignments = ", ".join(f"{name} = :{name}" for name in _COLUMNS)
        cursor = await db.execute(
            f"UPDATE events SET {assignments} WHERE id = :id",  # noqa: S608
            values,
        )
        if cursor.rowcount == 0:
            raise InvalidEventError(f"Event {event.id} does not exist", event.id)

        logger.debug(f"Updated event {stored.id}")
        return stored

    async def delete(self, db: aiosqlite.Connection, event_id: int) -> Optional[Event]:
        """Delete an event row; its instances go with it through the foreign key.

        Returns:
            The deleted event, or None if it did not exist
        """
        event = await self.get(db, event_id)
        if event is None:
            return None

        await db.execute("DELETE FROM events WHERE id = ?", (event_id,))
        logger.debug(f"Deleted event {event_id}")
        return event

    async def get(self, db: aiosqlite.Connection, event_id: int) -> Optional[Event]:
        """Fetch one event by row id."""
        cursor = await db.execute("SELECT * FROM events WHERE id = ?", (event_id,))
        row = await cursor.fetchone()
        return Event.from_row(row) if row else None

    async def get_window_candidates(
        self, db: aiosqlite.Connection, begin: int, end: int, lookback_ms: int
    ) -> list[Event]:
        """Events that can contribute instances to ``[begin, end]``.

        Includes every event whose span overlaps the window and every
        exception whose original occurrence may overlap it, looking back by
        ``lookback_ms`` from the window start.
        """
        cursor = await db.execute(
            """
            SELECT * FROM events
            WHERE dtstart IS NOT NULL AND (
                (dtstart <= :end AND (last_date IS NULL OR last_date >= :begin))
                OR (
                    original_instance_time IS NOT NULL
                    AND original_instance_time <= :end
                    AND original_instance_time >= :lookback_begin
                )
            )
            ORDER BY id
            """,
            {"begin": begin, "end": end, "lookback_begin": begin - lookback_ms},
        )
        rows = await cursor.fetchall()
        return [Event.from_row(row) for row in rows]

    async def get_family(
        self, db: aiosqlite.Connection, family_key: Optional[str], event_id: Optional[int] = None
    ) -> list[Event]:
        """A recurrence and all of its exceptions.

        Without a sync id the family is the single row ``event_id``.
        """
        if family_key:
            cursor = await db.execute(
                "SELECT * FROM events WHERE sync_id = ? OR original_event = ? ORDER BY id",
                (family_key, family_key),
            )
        elif event_id is not None:
            cursor = await db.execute("SELECT * FROM events WHERE id = ?", (event_id,))
        else:
            return []

        rows = await cursor.fetchall()
        return [Event.from_row(row) for row in rows]
