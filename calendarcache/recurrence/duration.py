"""Parsing of RFC 5545 style event durations."""

import re
from datetime import timedelta

from icalendar.prop import vDuration

from .exceptions import DurationParseError

MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR
MILLIS_PER_WEEK = 7 * MILLIS_PER_DAY

# Calendar providers store "P3600S", which RFC 5545 spells "PT3600S"
_SECONDS_SHORTHAND_RE = re.compile(r"^([+-]?)P(\d+)S$")


def parse_duration(value: str) -> int:
    """Parse a duration string into signed milliseconds.

    Args:
        value: Duration such as ``P1D``, ``+PT1H`` or ``P3600S``

    Returns:
        Duration in milliseconds

    Raises:
        DurationParseError: If the value is not a valid duration
    """
    text = (value or "").strip().upper()
    if text.rstrip("T") in ("P", "+P", "-P"):
        raise DurationParseError(f"Invalid duration: {value!r}", value)

    text = _SECONDS_SHORTHAND_RE.sub(r"\1PT\2S", text)
    try:
        delta = vDuration.from_ical(text)
    except ValueError as e:
        raise DurationParseError(f"Invalid duration: {value!r}", value) from e

    return delta // timedelta(milliseconds=1)
