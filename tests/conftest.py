"""Shared fixtures for the instance cache test suite."""

import logging
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from calendarcache.cache.database import DatabaseManager
from calendarcache.cache.events import EventStore
from calendarcache.cache.instances import InstanceStore
from calendarcache.cache.manager import CacheManager
from calendarcache.cache.models import Event
from calendarcache.config.settings import CalendarCacheSettings, reset_settings
from calendarcache.monitoring import performance
from calendarcache.recurrence.expander import RecurrenceExpander
from calendarcache.timezone.service import TimezoneService, reset_timezone_service

# Monday 2025-03-03, a week before the US DST switch
DAY0 = datetime(2025, 3, 3, tzinfo=timezone.utc)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def ms(value: datetime) -> int:
    """Epoch millis of an aware datetime."""
    return int(value.timestamp()) * 1000


@pytest.fixture(autouse=True)
def reset_global_state() -> Any:
    """Drop module-level singletons between tests."""
    reset_settings()
    reset_timezone_service()
    globals_before = performance._performance_logger
    yield
    reset_settings()
    reset_timezone_service()
    performance._performance_logger = globals_before


@pytest.fixture
def test_settings(tmp_path: Path) -> CalendarCacheSettings:
    """Settings isolated in a temporary directory with a fixed UTC local timezone."""
    settings = CalendarCacheSettings(
        app_name="CalendarCache-Test",
        data_dir=tmp_path / "data",
        config_dir=tmp_path / "config",
        local_timezone="UTC",
        check_timezone_on_startup=False,
    )
    settings.logging.console_level = "ERROR"
    settings.logging.performance_enabled = False
    return settings


@pytest.fixture
def timezone_service() -> TimezoneService:
    """Timezone service pinned to UTC."""
    return TimezoneService("UTC")


@pytest.fixture
def database(tmp_path: Path) -> DatabaseManager:
    """Database manager on a fresh file."""
    return DatabaseManager(tmp_path / "test_instances.db")


@pytest.fixture
def event_store(timezone_service: TimezoneService) -> EventStore:
    """Event store sharing the UTC timezone service."""
    return EventStore(RecurrenceExpander(timezone_service), timezone_service)


@pytest.fixture
def instance_store() -> InstanceStore:
    return InstanceStore()


@pytest.fixture
async def cache_manager(
    test_settings: CalendarCacheSettings, timezone_service: TimezoneService
) -> AsyncGenerator[CacheManager, None]:
    """Create real CacheManager instance backed by a temporary database."""
    manager = CacheManager(test_settings, timezone_service)

    try:
        assert await manager.initialize()
        yield manager
    finally:
        try:
            await manager.close()
        except Exception as e:
            logging.debug(f"Cache manager cleanup failed: {e}")


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """Factory for events starting on DAY0 unless told otherwise."""

    def _make_event(**overrides: Any) -> Event:
        start = overrides.pop("start", DAY0.replace(hour=10))
        hours = overrides.pop("hours", 1)
        fields: dict[str, Any] = {
            "sync_id": f"event-{ms(start)}",
            "title": "Test Event",
            "dtstart": ms(start),
            "dtend": ms(start) + hours * HOUR_MS,
        }
        fields.update(overrides)
        return Event(**fields)

    return _make_event
