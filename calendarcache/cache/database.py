"""SQLite database operations for the calendar instance cache."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from .exceptions import CacheStorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sync_id TEXT,
        calendar_id INTEGER NOT NULL DEFAULT 1,
        title TEXT,
        dtstart INTEGER,
        dtend INTEGER,
        duration TEXT,
        event_timezone TEXT,
        all_day INTEGER NOT NULL DEFAULT 0,
        rrule TEXT,
        rdate TEXT,
        exrule TEXT,
        exdate TEXT,
        original_event TEXT,
        original_instance_time INTEGER,
        status TEXT NOT NULL DEFAULT 'confirmed',
        last_date INTEGER,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Window candidate lookups
    """
    CREATE INDEX IF NOT EXISTS idx_events_dtstart_last_date
    ON events(dtstart, last_date)
    """,
    # Family lookups
    """
    CREATE INDEX IF NOT EXISTS idx_events_sync_id
    ON events(sync_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_events_original_event
    ON events(original_event, original_instance_time)
    """,
    """
    CREATE TRIGGER IF NOT EXISTS update_events_timestamp
    AFTER UPDATE ON events
    BEGIN
        UPDATE events SET updated_at = CURRENT_TIMESTAMP
        WHERE id = NEW.id;
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS instances (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id INTEGER NOT NULL,
        begin_ms INTEGER NOT NULL,
        end_ms INTEGER NOT NULL,
        start_day INTEGER NOT NULL,
        end_day INTEGER NOT NULL,
        start_minute INTEGER NOT NULL,
        end_minute INTEGER NOT NULL,
        UNIQUE (event_id, begin_ms, end_ms),
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_instances_range
    ON instances(begin_ms, end_ms)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_instances_days
    ON instances(start_day, end_day)
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


class DatabaseManager:
    """Manages SQLite connections, schema and transactions for the instance cache."""

    def __init__(self, database_path: Union[Path, str], busy_timeout_ms: int = 5000):
        """Initialize database manager.

        Args:
            database_path: Path to SQLite database file
            busy_timeout_ms: How long a connection waits on another writer
        """
        self.database_path = (
            Path(database_path) if isinstance(database_path, str) else database_path
        )
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False
        self._initialization_lock: Optional[asyncio.Lock] = None

        logger.info(f"Database manager initialized (lazy): {database_path}")

    async def _ensure_initialized(self) -> None:
        """Ensure database schema exists before operations.

        Raises:
            CacheStorageError: If the schema cannot be created
        """
        if self._initialized:
            return

        # Use a lock to prevent concurrent initialization
        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()

        async with self._initialization_lock:
            # Double-check after acquiring lock
            if self._initialized:
                return

            try:
                await self._initialize_database()
            except aiosqlite.Error as e:
                logger.exception("Failed to initialize database")
                raise CacheStorageError(f"Failed to initialize database: {e}") from e
            self._initialized = True

    async def _initialize_database(self) -> None:
        """Create tables, indexes and triggers."""
        async with aiosqlite.connect(str(self.database_path)) as db:
            # WAL lets readers proceed while an expansion holds the write lock
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.execute("PRAGMA foreign_keys=ON")

            for statement in _SCHEMA:
                await db.execute(statement)

            await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            await db.commit()

        logger.info("Database schema initialized successfully")

    async def initialize(self) -> bool:
        """Initialize database schema.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            await self._ensure_initialized()
        except CacheStorageError:
            return False
        return True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection in autocommit mode with row access by name.

        Raises:
            CacheStorageError: If the database cannot be opened
        """
        await self._ensure_initialized()
        try:
            db = await aiosqlite.connect(str(self.database_path), isolation_level=None)
        except aiosqlite.Error as e:
            raise CacheStorageError(f"Failed to open database: {e}") from e

        try:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
            yield db
        finally:
            await db.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed block in one ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken up front so concurrent expansions serialize
        instead of failing on lock upgrade. Commits on success, rolls back on
        any exception.

        Raises:
            CacheStorageError: If SQLite fails inside the transaction
        """
        async with self.connection() as db:
            try:
                await db.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise CacheStorageError(f"Failed to begin transaction: {e}") from e

            try:
                yield db
            except aiosqlite.Error as e:
                await db.rollback()
                logger.exception("Transaction rolled back after database error")
                raise CacheStorageError(f"Database error: {e}") from e
            except BaseException:
                await db.rollback()
                raise

            try:
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                raise CacheStorageError(f"Failed to commit transaction: {e}") from e

    async def get_metadata(self, db: aiosqlite.Connection) -> dict[str, str]:
        """Read every key/value pair of the cache_metadata table."""
        cursor = await db.execute("SELECT key, value FROM cache_metadata")
        rows = await cursor.fetchall()
        return {row["key"]: row["value"] for row in rows}

    async def set_metadata(self, db: aiosqlite.Connection, **kwargs: Any) -> None:
        """Upsert cache_metadata entries."""
        for key, value in kwargs.items():
            await db.execute(
                """
                INSERT OR REPLACE INTO cache_metadata (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                (key, str(value)),
            )

    async def delete_metadata(self, db: aiosqlite.Connection, *keys: str) -> None:
        """Remove cache_metadata entries."""
        for key in keys:
            await db.execute("DELETE FROM cache_metadata WHERE key = ?", (key,))

    async def get_database_info(self) -> dict[str, Any]:
        """Get database information and statistics.

        Returns:
            dictionary with database information
        """
        try:
            async with self.connection() as db:
                info: dict[str, Any] = {}

                if self.database_path.exists():
                    info["file_size_bytes"] = self.database_path.stat().st_size

                for table in ("events", "instances"):
                    cursor = await db.execute(f"SELECT COUNT(*) AS count FROM {table}")  # noqa: S608
                    row = await cursor.fetchone()
                    info[f"{table}_count"] = row["count"] if row else 0

                cursor = await db.execute("PRAGMA user_version")
                version_row = await cursor.fetchone()
                info["user_version"] = version_row[0] if version_row else 0

                cursor = await db.execute("PRAGMA journal_mode")
                journal_row = await cursor.fetchone()
                info["journal_mode"] = journal_row[0] if journal_row else "unknown"

                return info

        except (aiosqlite.Error, CacheStorageError):
            logger.exception("Failed to get database info")
            return {}
