"""Recurrence expansion and duration parsing."""

from .duration import parse_duration
from .exceptions import DurationParseError, RecurrenceError, RecurrenceParseError
from .expander import RecurrenceExpander, RecurrenceSet

__all__ = [
    "DurationParseError",
    "RecurrenceError",
    "RecurrenceExpander",
    "RecurrenceParseError",
    "RecurrenceSet",
    "parse_duration",
]
