"""Windowed cache of materialized calendar event instances."""

from .database import DatabaseManager
from .events import EventStore
from .exceptions import CacheError, CacheStorageError, InvalidEventError
from .expansion import ExpansionOrchestrator
from .instances import InstanceStore
from .manager import CacheManager
from .models import CacheWindowState, Event, EventStatus, Instance, InstanceRow, WindowStatus
from .overlay import (
    ExceptionOccurrence,
    OverlayResolver,
    PlainOccurrence,
    RecurringOccurrence,
)
from .window import CacheWindowTracker

__all__ = [
    "CacheError",
    "CacheManager",
    "CacheStorageError",
    "CacheWindowState",
    "CacheWindowTracker",
    "DatabaseManager",
    "Event",
    "EventStatus",
    "EventStore",
    "ExceptionOccurrence",
    "ExpansionOrchestrator",
    "Instance",
    "InstanceRow",
    "InstanceStore",
    "InvalidEventError",
    "OverlayResolver",
    "PlainOccurrence",
    "RecurringOccurrence",
    "WindowStatus",
]
