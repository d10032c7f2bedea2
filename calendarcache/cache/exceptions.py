"""Cache-specific exceptions for error handling."""

from typing import Optional


class CacheError(Exception):
    """Base exception for instance cache errors."""

    def __init__(self, message: str, event_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.event_id = event_id


class InvalidEventError(CacheError):
    """Exception raised when an event row cannot be written, e.g. it has no start."""



class CacheStorageError(CacheError):
    """Exception raised when the SQLite store fails underneath a cache operation."""
