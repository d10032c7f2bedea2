"""Lazy expansion of events into the instance cache and incremental repair."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone, tzinfo
from typing import Optional

import aiosqlite

from ..config.settings import CalendarCacheSettings
from ..monitoring.performance import performance_monitor, performance_timer
from ..recurrence.exceptions import RecurrenceParseError
from ..recurrence.expander import RecurrenceExpander, RecurrenceSet
from ..timezone.projection import compute_time_fields
from ..timezone.service import Instant, TimezoneService
from ..utils.logging import VERBOSE
from .database import DatabaseManager
from .events import EventStore
from .exceptions import CacheStorageError, InvalidEventError
from .instances import InstanceStore
from .models import CacheWindowState, Event, EventStatus, Instance, WindowStatus
from .overlay import (
    Candidate,
    ExceptionOccurrence,
    OverlayResolver,
    PlainOccurrence,
    RecurringOccurrence,
)
from .window import CacheWindowTracker

logger = logging.getLogger(__name__)

UTC = timezone.utc


def _log_detached_failure(task: "asyncio.Future[CacheWindowState]") -> None:
    """Report a failed acquisition whose caller was cancelled."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Instance expansion failed after its caller was cancelled", exc_info=error)


class ExpansionOrchestrator:
    """Keeps the instance cache covering every window that has been queried.

    The window only grows. A request inside it is a no-op, a request past
    either edge expands just the missing side, and an empty or
    timezone-stale cache is rebuilt from scratch.
    """

    def __init__(
        self,
        settings: CalendarCacheSettings,
        database: DatabaseManager,
        events: EventStore,
        instances: InstanceStore,
        tracker: CacheWindowTracker,
        timezone_service: TimezoneService,
        expander: RecurrenceExpander,
    ):
        self.settings = settings
        self.database = database
        self.events = events
        self.instances = instances
        self.tracker = tracker
        self.timezone_service = timezone_service
        self.expander = expander

    @asynccontextmanager
    async def exclusive_transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the window lock and one write transaction."""
        async with self.tracker.exclusive(), self.database.transaction() as db:
            yield db

    # Candidate construction

    def projection_timezone(self, event: Event, local_timezone: Optional[str]) -> tzinfo:
        """Timezone used for an instance's day and minute fields."""
        if event.all_day:
            return UTC
        if self.settings.project_in_local_timezone:
            return self.timezone_service.get_timezone(local_timezone)
        return self.events.event_timezone(event)

    def _instance(self, event: Event, begin: int, end: int, tz: tzinfo) -> Instance:
        fields = compute_time_fields(begin, end, tz)
        return Instance(event_id=event.id, begin=begin, end=end, **fields._asdict())

    def build_candidates(
        self, event: Event, begin: int, end: int, local_timezone: Optional[str]
    ) -> list[Candidate]:
        """Candidate instances one event row contributes to ``[begin, end]``."""
        if event.dtstart is None or event.id is None:
            return []

        duration = event.effective_duration_ms()
        tz = self.projection_timezone(event, local_timezone)

        if event.is_recurring:
            if event.is_cancelled:
                logger.error(f"Cancelled recurring event {event.id} should have been deleted")
                return []

            anchor = self.timezone_service.from_millis(event.dtstart, self.events.event_timezone(event))
            try:
                # Start early enough to catch occurrences already running at ``begin``
                starts = self.expander.expand(
                    anchor, RecurrenceSet.from_event(event), begin - duration, end
                )
            except RecurrenceParseError as e:
                logger.warning(
                    f"Could not expand recurrence of event {event.id}, "
                    f"treating it as a single zero-length event: {e}"
                )
                duration = 0
            else:
                return [
                    RecurringOccurrence(self._instance(event, start, start + duration, tz))
                    for start in starts
                    if start + duration >= begin
                ]

        start = event.dtstart
        stop = start + duration
        outside = stop < begin or start > end
        instance = self._instance(event, start, stop, tz)

        if event.is_exception:
            return [
                ExceptionOccurrence(
                    instance=instance,
                    original_event=event.original_event,
                    original_instance_time=event.original_instance_time,
                    # Outside the window it can only suppress its original occurrence
                    status=EventStatus.CANCELLED if outside else event.status,
                )
            ]

        if outside:
            logger.warning(f"Unexpected event {event.id} outside window [{begin}, {end}]")
            return []
        return [PlainOccurrence(instance)]

    def expand_events(
        self, events: Iterable[Event], begin: int, end: int, local_timezone: Optional[str]
    ) -> list[Instance]:
        """Expand events for ``[begin, end]`` and overlay their exceptions."""
        resolver = OverlayResolver()
        for event in events:
            for candidate in self.build_candidates(event, begin, end, local_timezone):
                resolver.add(event.sync_id, candidate)
        return resolver.resolve()

    async def expand_window(
        self, db: aiosqlite.Connection, begin: int, end: int, local_timezone: str
    ) -> int:
        """Materialize every instance overlapping ``[begin, end]``.

        Returns:
            Number of instances written
        """
        with performance_timer("expand_window", "expansion"):
            candidates = await self.events.get_window_candidates(
                db, begin, end, self.settings.max_assumed_duration_ms
            )
            produced = self.expand_events(candidates, begin, end, local_timezone)
            written = await self.instances.upsert_many(db, produced)

        logger.log(
            VERBOSE,
            f"Expanded [{begin}, {end}]: {len(candidates)} events, {written} instances",
        )
        return written

    # Window acquisition

    def padded_window(self, begin: int, end: int) -> tuple[int, int]:
        """Widen a short request symmetrically up to the minimum expansion span."""
        span = end - begin
        minimum = self.settings.min_expansion_span_ms
        if span >= minimum:
            return begin, end

        additional = (minimum - span) // 2
        return begin - additional, end + additional

    @performance_monitor("acquire_range", "expansion")
    async def acquire_range(
        self, begin: Instant, end: Instant, use_minimum_expansion_window: bool = True
    ) -> CacheWindowState:
        """Ensure every instance overlapping ``[begin, end]`` is materialized.

        Once started the expansion runs to completion even if the caller is
        cancelled, so the window state never lags the stored instances.

        Returns:
            The window state after acquisition
        """
        begin_ms = self.timezone_service.to_millis(begin)
        end_ms = self.timezone_service.to_millis(end)
        if end_ms < begin_ms:
            raise ValueError(f"Range end {end_ms} precedes begin {begin_ms}")

        task = asyncio.ensure_future(
            self._acquire(begin_ms, end_ms, use_minimum_expansion_window)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_log_detached_failure)
            raise

    async def _acquire(self, begin: int, end: int, pad: bool) -> CacheWindowState:
        async with self.exclusive_transaction() as db:
            return await self.acquire_range_locked(db, begin, end, pad)

    async def acquire_range_locked(
        self, db: aiosqlite.Connection, begin: int, end: int, pad: bool = True
    ) -> CacheWindowState:
        """Acquire a range; the caller holds :meth:`exclusive_transaction`."""
        local_timezone = self.timezone_service.get_local_timezone_name()
        expand_begin, expand_end = self.padded_window(begin, end) if pad else (begin, end)

        state = await self.tracker.read(db, repair=True)
        status = state.status(local_timezone)

        if status != WindowStatus.COVERS:
            if status == WindowStatus.STALE_TIMEZONE:
                logger.info(
                    f"Local timezone changed from {state.timezone} to {local_timezone}, "
                    "rebuilding instance cache"
                )
            await self.instances.delete_all(db)
            await self.expand_window(db, expand_begin, expand_end, local_timezone)
            return await self.tracker.write(
                db,
                CacheWindowState(
                    timezone=local_timezone, min_instance=expand_begin, max_instance=expand_end
                ),
            )

        if state.covers(begin, end):
            return state

        min_instance, max_instance = state.min_instance, state.max_instance
        if begin < min_instance:
            await self.expand_window(db, expand_begin, min_instance, local_timezone)
            min_instance = expand_begin
        if end > max_instance:
            await self.expand_window(db, max_instance, expand_end, local_timezone)
            max_instance = expand_end

        return await self.tracker.write(
            db,
            CacheWindowState(
                timezone=local_timezone, min_instance=min_instance, max_instance=max_instance
            ),
        )

    async def invalidate_all(self) -> None:
        """Force the next acquisition to rebuild the cache from scratch."""
        async with self.exclusive_transaction() as db:
            await self.invalidate_all_locked(db)

    async def invalidate_all_locked(self, db: aiosqlite.Connection) -> None:
        await self.tracker.clear(db)
        logger.info("Instance cache invalidated")

    # Incremental repair

    async def update_instances_locked(
        self, db: aiosqlite.Connection, event: Event, is_new: bool
    ) -> None:
        """Bring the instances of one written event in line with the cache window.

        Raises:
            InvalidEventError: If a new event has no start
        """
        if event.dtstart is None:
            if is_new:
                raise InvalidEventError("DTSTART field missing", event.id)
            return
        if event.id is None:
            raise InvalidEventError("Event must be stored before its instances are updated")

        state = await self.tracker.read(db, repair=True)
        if state.is_empty:
            return

        if not is_new:
            await self.instances.delete_for_event(db, event.id)

        if event.is_recurrence_event:
            await self._update_family_locked(db, event, state)
            return

        end = event.dtstart + event.effective_duration_ms()
        if event.dtstart <= state.max_instance and end >= state.min_instance:
            tz = self.projection_timezone(event, state.timezone)
            await self.instances.upsert_many(db, [self._instance(event, event.dtstart, end, tz)])

    async def _update_family_locked(
        self, db: aiosqlite.Connection, event: Event, state: CacheWindowState
    ) -> None:
        """Re-expand a recurrence and its exceptions within the current window."""
        family_key = event.family_key
        inside_window = event.dtstart <= state.max_instance and (
            event.last_date is None or event.last_date >= state.min_instance
        )
        affects_window = (
            event.original_instance_time is not None
            and state.min_instance - self.settings.max_assumed_duration_ms
            <= event.original_instance_time
            <= state.max_instance
        )
        if not (inside_window or affects_window):
            logger.debug(f"Event {event.id} outside cache window, family instances kept")
            return

        deleted = await self.instances.delete_for_family(db, family_key, event.id)
        family = await self.events.get_family(db, family_key, event.id)
        produced = self.expand_events(
            family, state.min_instance, state.max_instance, state.timezone
        )
        written = await self.instances.upsert_many(db, produced)
        logger.debug(
            f"Re-expanded family {family_key or event.id}: "
            f"{len(family)} events, {deleted} removed, {written} written"
        )

    # Timezone changes

    async def update_timezone_dependent_fields(self, now: Optional[datetime] = None) -> bool:
        """Rebuild the current month if the cache was built for another timezone.

        Returns:
            True if instances were regenerated
        """
        local_timezone = self.timezone_service.get_local_timezone_name()
        try:
            async with self.exclusive_transaction() as db:
                state = await self.tracker.read(db, repair=True)
                if state.timezone == local_timezone:
                    return False

                begin = self.timezone_service.month_start_millis(now)
                end = begin + self.settings.min_expansion_span_ms
                await self.acquire_range_locked(db, begin, end, pad=True)
        except CacheStorageError:
            logger.exception("Failed to regenerate instances after timezone change")
            await self.invalidate_all()
            return False

        logger.info(f"Regenerated instances for timezone {local_timezone}")
        return True
