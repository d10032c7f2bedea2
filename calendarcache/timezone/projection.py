"""Projection of instance boundaries onto julian days and minutes of the day."""

from datetime import datetime, timedelta, timezone as dt_timezone, tzinfo
from typing import NamedTuple

from .service import JULIAN_DAY_OFFSET

MINUTES_PER_DAY = 24 * 60

_EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


class TimeFields(NamedTuple):
    """Timezone-dependent fields stored alongside each instance."""

    start_day: int
    end_day: int
    start_minute: int
    end_minute: int


def project(instant_ms: int, tz: tzinfo) -> tuple[int, int]:
    """Project an instant to ``(julian_day, minute_of_day)`` in ``tz``."""
    local = (_EPOCH + timedelta(milliseconds=instant_ms)).astimezone(tz)
    return local.date().toordinal() + JULIAN_DAY_OFFSET, local.hour * 60 + local.minute


def compute_time_fields(begin_ms: int, end_ms: int, tz: tzinfo) -> TimeFields:
    """Project both instance boundaries independently.

    An end that lands exactly on midnight of a later day is reported as
    minute 1440 of the previous day so the instance does not spill into a
    day it never occupies.
    """
    start_day, start_minute = project(begin_ms, tz)
    end_day, end_minute = project(end_ms, tz)

    if end_minute == 0 and end_day > start_day:
        end_minute = MINUTES_PER_DAY
        end_day -= 1

    return TimeFields(start_day, end_day, start_minute, end_minute)
