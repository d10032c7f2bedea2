"""Tracking of the materialized instance window."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from .database import DatabaseManager
from .models import CacheWindowState

logger = logging.getLogger(__name__)

KEY_TIMEZONE = "instances_timezone"
KEY_MIN_INSTANCE = "instances_min"
KEY_MAX_INSTANCE = "instances_max"
KEY_UPDATED_AT = "instances_updated_at"

_WINDOW_KEYS = (KEY_TIMEZONE, KEY_MIN_INSTANCE, KEY_MAX_INSTANCE, KEY_UPDATED_AT)


class CacheWindowTracker:
    """Owns the persisted window state and the section that mutates it.

    Every read-modify-write of the window, together with the instance writes
    it describes, must run inside :meth:`exclusive` and a single database
    transaction.
    """

    def __init__(self, database: DatabaseManager):
        self.database = database
        self._lock: Optional[asyncio.Lock] = None

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Serialize window mutations within this process."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            yield

    async def read(self, db: aiosqlite.Connection, repair: bool = False) -> CacheWindowState:
        """Read the window state.

        An unreadable state is reported as empty. With ``repair`` it is also
        cleared; only callers holding :meth:`exclusive` inside a transaction
        may repair.
        """
        try:
            metadata = await self.database.get_metadata(db)
            return CacheWindowState(
                timezone=metadata.get(KEY_TIMEZONE),
                min_instance=int(metadata.get(KEY_MIN_INSTANCE, 0)),
                max_instance=int(metadata.get(KEY_MAX_INSTANCE, 0)),
                updated_at=metadata.get(KEY_UPDATED_AT),
            )
        except (aiosqlite.Error, ValueError, TypeError):
            logger.exception("Cache window state unreadable, treating instance cache as empty")

        if repair:
            await self.clear(db)
        return CacheWindowState()

    async def write(self, db: aiosqlite.Connection, state: CacheWindowState) -> CacheWindowState:
        """Persist a new window state."""
        written = state.model_copy(
            update={"updated_at": datetime.now(timezone.utc).isoformat()}
        )
        await self.database.set_metadata(
            db,
            **{
                KEY_TIMEZONE: written.timezone or "",
                KEY_MIN_INSTANCE: written.min_instance,
                KEY_MAX_INSTANCE: written.max_instance,
                KEY_UPDATED_AT: written.updated_at,
            },
        )
        logger.debug(
            f"Cache window now [{written.min_instance}, {written.max_instance}] in {written.timezone}"
        )
        return written

    async def clear(self, db: aiosqlite.Connection) -> None:
        """Forget the window so the cache reads as empty."""
        await self.database.delete_metadata(db, *_WINDOW_KEYS)
        logger.debug("Cache window cleared")
