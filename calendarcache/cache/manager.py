"""Cache manager exposing the instance cache to the rest of the application."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from ..config.settings import CalendarCacheSettings
from ..monitoring import init_performance_logging, performance_monitor
from ..recurrence.expander import RecurrenceExpander
from ..timezone.service import Instant, TimezoneService
from .database import DatabaseManager
from .events import EventStore
from .exceptions import InvalidEventError
from .expansion import ExpansionOrchestrator
from .instances import InstanceStore
from .models import CacheWindowState, Event, InstanceRow
from .window import CacheWindowTracker

logger = logging.getLogger(__name__)


class CacheManager:
    """Windowed instance cache over a store of calendar events.

    Queries materialize whatever part of the requested range is missing
    before reading. Event writes, either through the convenience methods or
    through the ``on_event_*`` hooks called by an external writer, repair the
    affected instances in the same critical section.
    """

    def __init__(
        self,
        settings: CalendarCacheSettings,
        timezone_service: Optional[TimezoneService] = None,
    ) -> None:
        """Initialize cache manager.

        Args:
            settings: Application settings
            timezone_service: Source of the local timezone; one is created from
                ``settings.local_timezone`` when omitted
        """
        self.settings = settings
        self.performance = init_performance_logging(settings)
        self.timezone_service = timezone_service or TimezoneService(settings.local_timezone)
        self.db = DatabaseManager(settings.database_file)

        expander = RecurrenceExpander(self.timezone_service)
        self.events = EventStore(expander, self.timezone_service)
        self.instances = InstanceStore()
        self.tracker = CacheWindowTracker(self.db)
        self.expansion = ExpansionOrchestrator(
            settings=settings,
            database=self.db,
            events=self.events,
            instances=self.instances,
            tracker=self.tracker,
            timezone_service=self.timezone_service,
            expander=expander,
        )
        self._timezone_task: Optional[asyncio.Task] = None

        logger.info("Cache manager initialized")

    async def initialize(self) -> bool:
        """Initialize the database and optionally start the timezone check.

        Returns:
            True if initialization was successful, False otherwise
        """
        success = await self.db.initialize()
        if not success:
            logger.error("Failed to initialize cache manager")
            return False

        if self.settings.check_timezone_on_startup:
            self.update_timezone_dependent_fields()

        logger.info("Cache manager initialization completed")
        return True

    async def close(self) -> None:
        """Wait for a pending timezone check to finish."""
        if self._timezone_task is not None:
            await asyncio.gather(self._timezone_task, return_exceptions=True)
            self._timezone_task = None

    # Queries

    async def acquire_range(
        self, begin: Instant, end: Instant, use_minimum_expansion_window: bool = True
    ) -> CacheWindowState:
        """Ensure ``[begin, end]`` is materialized without reading it."""
        return await self.expansion.acquire_range(begin, end, use_minimum_expansion_window)

    @performance_monitor("query_instances", "cache")
    async def query_instances(
        self,
        begin: Instant,
        end: Instant,
        calendar_id: Optional[int] = None,
        event_id: Optional[int] = None,
    ) -> list[InstanceRow]:
        """Instances overlapping ``[begin, end]``, ordered by start.

        Args:
            begin: Range start as epoch millis or aware datetime
            end: Range end as epoch millis or aware datetime
            calendar_id: Only instances of events in this calendar
            event_id: Only instances of this event

        Returns:
            Matching instances joined with their event fields
        """
        begin_ms = self.timezone_service.to_millis(begin)
        end_ms = self.timezone_service.to_millis(end)
        await self.expansion.acquire_range(begin_ms, end_ms)

        async with self.db.connection() as db:
            return await self.instances.query_range(db, begin_ms, end_ms, calendar_id, event_id)

    @performance_monitor("query_instances_by_day", "cache")
    async def query_instances_by_day(
        self,
        start_day: int,
        end_day: int,
        calendar_id: Optional[int] = None,
        event_id: Optional[int] = None,
    ) -> list[InstanceRow]:
        """Instances touching local julian days ``[start_day, end_day]``."""
        await self._acquire_days(start_day, end_day)

        async with self.db.connection() as db:
            return await self.instances.query_days(db, start_day, end_day, calendar_id, event_id)

    async def get_event_days(self, start_day: int, end_day: int) -> list[int]:
        """Julian days within ``[start_day, end_day]`` that have at least one instance."""
        await self._acquire_days(start_day, end_day)

        async with self.db.connection() as db:
            return await self.instances.event_days(db, start_day, end_day)

    async def _acquire_days(self, start_day: int, end_day: int) -> None:
        if end_day < start_day:
            raise ValueError(f"End day {end_day} precedes start day {start_day}")

        # One extra day so the whole of end_day is covered
        begin = self.timezone_service.julian_day_to_millis(start_day)
        end = self.timezone_service.julian_day_to_millis(end_day + 1)
        await self.expansion.acquire_range(begin, end)

    async def get_cache_status(self) -> CacheWindowState:
        """Current window state."""
        async with self.db.connection() as db:
            return await self.tracker.read(db)

    async def get_cache_info(self) -> dict[str, Any]:
        """Window state merged with database statistics."""
        state = await self.get_cache_status()
        info = await self.db.get_database_info()
        info.update(state.model_dump())
        info["local_timezone"] = self.timezone_service.get_local_timezone_name()
        return info

    # Event writes

    async def insert_event(self, event: Event) -> Event:
        """Store a new event and materialize its instances.

        Raises:
            InvalidEventError: If the event has no start
        """
        async with self.expansion.exclusive_transaction() as db:
            stored = await self.events.insert(db, event)
            await self.expansion.update_instances_locked(db, stored, is_new=True)
        return stored

    async def update_event(self, event: Event) -> Event:
        """Replace an event and repair its instances.

        Raises:
            InvalidEventError: If the event has no id or does not exist
        """
        if event.id is None:
            raise InvalidEventError("Cannot update an event without an id")

        async with self.expansion.exclusive_transaction() as db:
            previous = await self.events.get(db, event.id)
            stored = await self.events.update(db, event)
            await self._repair_updated_locked(db, stored, previous)
        return stored

    async def delete_event(self, event_id: int) -> Optional[Event]:
        """Delete an event together with its instances.

        Returns:
            The deleted event, or None if it did not exist
        """
        async with self.expansion.exclusive_transaction() as db:
            deleted = await self.events.delete(db, event_id)
            if deleted is not None and deleted.is_recurrence_event:
                await self.expansion.invalidate_all_locked(db)
        return deleted

    # Hooks for an external event writer

    async def on_event_inserted(self, event: Event) -> None:
        """Repair instances after an event row was inserted elsewhere.

        Raises:
            InvalidEventError: If the event has no start
        """
        async with self.expansion.exclusive_transaction() as db:
            await self.expansion.update_instances_locked(db, event, is_new=True)

    async def on_event_updated(self, event: Event, previous: Optional[Event] = None) -> None:
        """Repair instances after an event row was updated elsewhere."""
        async with self.expansion.exclusive_transaction() as db:
            await self._repair_updated_locked(db, event, previous)

    async def on_event_deleted(self, event: Event) -> None:
        """Account for a deleted event; its instances cascade with the row."""
        if not event.is_recurrence_event:
            return

        async with self.expansion.exclusive_transaction() as db:
            await self.expansion.invalidate_all_locked(db)

    async def _repair_updated_locked(
        self, db: aiosqlite.Connection, event: Event, previous: Optional[Event]
    ) -> None:
        if (
            previous is not None
            and previous.is_recurrence_event
            and (not event.is_recurrence_event or previous.family_key != event.family_key)
        ):
            # The old family may still hold overridden or orphaned occurrences
            await self.expansion.invalidate_all_locked(db)
            return

        await self.expansion.update_instances_locked(db, event, is_new=False)

    # Cache control

    async def invalidate_all(self) -> None:
        """Forget the materialized window; the next query rebuilds it."""
        await self.expansion.invalidate_all()

    def update_timezone_dependent_fields(self, now: Optional[datetime] = None) -> asyncio.Task:
        """Start a background check that rebuilds instances for a new local timezone."""
        if self._timezone_task is not None and not self._timezone_task.done():
            return self._timezone_task

        self._timezone_task = asyncio.create_task(
            self.expansion.update_timezone_dependent_fields(now), name="calendarcache-timezone-check"
        )
        return self._timezone_task

    async def on_timezone_changed(self, timezone_name: str) -> bool:
        """Switch the local timezone and regenerate affected instances.

        Returns:
            True if instances were regenerated
        """
        self.timezone_service.set_local_timezone(timezone_name)
        return await self.expansion.update_timezone_dependent_fields()
