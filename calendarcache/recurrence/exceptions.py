"""Recurrence-specific exceptions for error handling."""

from typing import Optional


class RecurrenceError(Exception):
    """Base exception for recurrence-related errors."""

    def __init__(self, message: str, value: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.value = value


class RecurrenceParseError(RecurrenceError):
    """Exception raised when an RRULE, EXRULE, RDATE or EXDATE value cannot be parsed."""



class DurationParseError(RecurrenceError):
    """Exception raised when a duration string is malformed."""
