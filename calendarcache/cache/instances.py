"""Persistence of materialized instances."""

import logging
import time
from collections.abc import Iterable
from typing import Any, Optional

import aiosqlite

from ..monitoring.performance import get_performance_logger
from .models import Instance, InstanceRow

logger = logging.getLogger(__name__)

_SELECT_JOINED = """
    SELECT i.event_id, i.begin_ms, i.end_ms, i.start_day, i.end_day,
           i.start_minute, i.end_minute,
           e.sync_id, e.calendar_id, e.title, e.all_day, e.status, e.event_timezone
    FROM instances i
    JOIN events e ON e.id = i.event_id
"""


class InstanceStore:
    """Upserts, deletes and range queries over the instances table.

    Instances are written with ``INSERT OR REPLACE`` on
    ``(event_id, begin_ms, end_ms)`` so re-materializing an occurrence is
    harmless.
    """

    async def upsert_many(self, db: aiosqlite.Connection, instances: Iterable[Instance]) -> int:
        """Insert or replace instances.

        Returns:
            Number of instances written
        """
        rows = [
            (
                instance.event_id,
                instance.begin,
                instance.end,
                instance.start_day,
                instance.end_day,
                instance.start_minute,
                instance.end_minute,
            )
            for instance in instances
        ]
        if not rows:
            return 0

        start = time.perf_counter()
        await db.executemany(
            """
            INSERT OR REPLACE INTO instances (
                event_id, begin_ms, end_ms, start_day, end_day, start_minute, end_minute
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        get_performance_logger().log_database_performance(
            "upsert_instances", time.perf_counter() - start, rows_affected=len(rows)
        )
        return len(rows)

    async def delete_all(self, db: aiosqlite.Connection) -> int:
        """Delete every materialized instance."""
        cursor = await db.execute("DELETE FROM instances")
        logger.debug(f"Deleted {cursor.rowcount} instances")
        return cursor.rowcount

    async def delete_for_event(self, db: aiosqlite.Connection, event_id: int) -> int:
        """Delete the instances of one event row."""
        cursor = await db.execute("DELETE FROM instances WHERE event_id = ?", (event_id,))
        return cursor.rowcount

    async def delete_for_family(
        self, db: aiosqlite.Connection, family_key: Optional[str], event_id: Optional[int] = None
    ) -> int:
        """Delete the instances of a recurrence and all of its exceptions.

        Without a sync id only the instances of ``event_id`` are removed.
        """
        if not family_key:
            if event_id is None:
                return 0
            return await self.delete_for_event(db, event_id)

        cursor = await db.execute(
            """
            DELETE FROM instances WHERE event_id IN (
                SELECT id FROM events WHERE sync_id = ? OR original_event = ?
            )
            """,
            (family_key, family_key),
        )
        return cursor.rowcount

    async def query_range(
        self,
        db: aiosqlite.Connection,
        begin: int,
        end: int,
        calendar_id: Optional[int] = None,
        event_id: Optional[int] = None,
    ) -> list[InstanceRow]:
        """Instances overlapping ``[begin, end]`` in epoch millis, ordered by start."""
        where = ["i.begin_ms <= ?", "i.end_ms >= ?"]
        params: list[Any] = [end, begin]
        return await self._query(db, where, params, calendar_id, event_id)

    async def query_days(
        self,
        db: aiosqlite.Connection,
        start_day: int,
        end_day: int,
        calendar_id: Optional[int] = None,
        event_id: Optional[int] = None,
    ) -> list[InstanceRow]:
        """Instances touching julian days ``[start_day, end_day]``, ordered by start."""
        where = ["i.start_day <= ?", "i.end_day >= ?"]
        params: list[Any] = [end_day, start_day]
        return await self._query(db, where, params, calendar_id, event_id)

    async def _query(
        self,
        db: aiosqlite.Connection,
        where: list[str],
        params: list[Any],
        calendar_id: Optional[int],
        event_id: Optional[int],
    ) -> list[InstanceRow]:
        if calendar_id is not None:
            where.append("e.calendar_id = ?")
            params.append(calendar_id)
        if event_id is not None:
            where.append("i.event_id = ?")
            params.append(event_id)

        cursor = await db.execute(
            f"{_SELECT_JOINED} WHERE {' AND '.join(where)} ORDER BY i.begin_ms, i.event_id",  # noqa: S608
            params,
        )
        rows = await cursor.fetchall()
        return [InstanceRow.from_row(row) for row in rows]

    async def event_days(
        self, db: aiosqlite.Connection, start_day: int, end_day: int
    ) -> list[int]:
        """Julian days within ``[start_day, end_day]`` occupied by at least one instance."""
        cursor = await db.execute(
            """
            SELECT DISTINCT start_day, end_day FROM instances
            WHERE start_day <= ? AND end_day >= ?
            """,
            (end_day, start_day),
        )
        rows = await cursor.fetchall()

        days: set[int] = set()
        for row in rows:
            first = max(row["start_day"], start_day)
            last = min(row["end_day"], end_day)
            days.update(range(first, last + 1))
        return sorted(days)

    async def count(self, db: aiosqlite.Connection) -> int:
        """Number of materialized instances."""
        cursor = await db.execute("SELECT COUNT(*) AS count FROM instances")
        row = await cursor.fetchone()
        return row["count"] if row else 0
