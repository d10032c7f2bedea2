"""Core timezone service for the instance cache.

Resolves the device's local timezone, converts between epoch milliseconds and
aware datetimes, and maps julian day numbers to instants. All timezone
lookups go through this service so a local timezone change is observed
consistently by the cache.
"""

import logging
import os
from datetime import date, datetime, timedelta, timezone as dt_timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC_NAME = "UTC"

# date.toordinal() of 1970-01-01 is 719163, its julian day number is 2440588
JULIAN_DAY_OFFSET = 1721425

MILLIS_PER_DAY = 24 * 60 * 60 * 1000

Instant = Union[int, datetime]


class TimezoneError(Exception):
    """Raised when timezone operations fail."""


class TimezoneService:
    """Timezone service holding the cache's notion of local time.

    The local timezone comes from an explicit name, then the ``TZ``
    environment variable, then UTC.
    """

    def __init__(self, local_timezone: Optional[str] = None) -> None:
        """Initialize timezone service.

        Args:
            local_timezone: IANA timezone name to use as the local timezone
        """
        self._local_tz_name: Optional[str] = None
        if local_timezone:
            self.set_local_timezone(local_timezone)

    def get_local_timezone_name(self) -> str:
        """Get the IANA name of the local timezone."""
        if self._local_tz_name:
            return self._local_tz_name

        env_tz = os.environ.get("TZ", "").lstrip(":")
        if env_tz and self.is_valid_timezone(env_tz):
            return env_tz

        return UTC_NAME

    def get_local_timezone(self) -> tzinfo:
        """Get the local timezone object."""
        return self.get_timezone(self.get_local_timezone_name())

    def set_local_timezone(self, name: str) -> None:
        """Change the local timezone.

        Raises:
            TimezoneError: If the name is not a known IANA timezone.
        """
        self.get_timezone(name)
        if name != self._local_tz_name:
            logger.info(f"Local timezone set to {name}")
        self._local_tz_name = name

    def get_timezone(self, name: Optional[str]) -> tzinfo:
        """Resolve a timezone name, treating an empty name as UTC.

        Raises:
            TimezoneError: If the timezone cannot be found.
        """
        if not name or name.upper() in ("UTC", "Z", "GMT"):
            return dt_timezone.utc

        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise TimezoneError(f"Unknown timezone '{name}': {e}") from e

    def is_valid_timezone(self, name: str) -> bool:
        """Check whether a timezone name resolves."""
        try:
            self.get_timezone(name)
        except TimezoneError:
            return False
        return True

    def ensure_timezone_aware(self, dt: datetime, fallback_tz: Optional[tzinfo] = None) -> datetime:
        """Attach the fallback (local by default) timezone to a naive datetime."""
        if not isinstance(dt, datetime):
            raise TypeError(f"Expected datetime object, got {type(dt)}")

        if dt.tzinfo is not None:
            return dt
        return dt.replace(tzinfo=fallback_tz or self.get_local_timezone())

    def to_millis(self, value: Instant) -> int:
        """Convert an aware datetime (naive means local) or millis to epoch millis."""
        if isinstance(value, bool):
            raise TypeError("Expected datetime or int millis, got bool")
        if isinstance(value, int):
            return value
        if isinstance(value, datetime):
            aware = self.ensure_timezone_aware(value)
            delta = aware - datetime(1970, 1, 1, tzinfo=dt_timezone.utc)
            return (delta.days * MILLIS_PER_DAY) + (delta.seconds * 1000) + (
                delta.microseconds // 1000
            )
        raise TypeError(f"Expected datetime or int millis, got {type(value)}")

    def from_millis(self, millis: int, tz: Optional[tzinfo] = None) -> datetime:
        """Convert epoch millis to an aware datetime in ``tz`` (UTC by default)."""
        utc_dt = datetime(1970, 1, 1, tzinfo=dt_timezone.utc) + timedelta(milliseconds=millis)
        return utc_dt.astimezone(tz or dt_timezone.utc)

    def julian_day_to_millis(self, julian_day: int, tz: Optional[tzinfo] = None) -> int:
        """Millis of local midnight starting ``julian_day`` in ``tz`` (local by default)."""
        local_date = date.fromordinal(julian_day - JULIAN_DAY_OFFSET)
        midnight = datetime(
            local_date.year, local_date.month, local_date.day, tzinfo=tz or self.get_local_timezone()
        )
        return self.to_millis(midnight)

    def month_start_millis(self, now: Optional[datetime] = None) -> int:
        """Millis of the first day of the current month at local midnight."""
        local_tz = self.get_local_timezone()
        current = (now or datetime.now(dt_timezone.utc)).astimezone(local_tz)
        return self.to_millis(datetime(current.year, current.month, 1, tzinfo=local_tz))


def julian_day(value: date) -> int:
    """Julian day number of a calendar date."""
    return value.toordinal() + JULIAN_DAY_OFFSET


# Global service instance (using module-level variable instead of global statement)
_timezone_service: Optional[TimezoneService] = None


def get_timezone_service() -> TimezoneService:
    """Get global timezone service instance.

    Returns:
        Singleton TimezoneService instance.
    """
    if globals()["_timezone_service"] is None:
        globals()["_timezone_service"] = TimezoneService()
    return globals()["_timezone_service"]


def reset_timezone_service() -> None:
    """Drop the global timezone service (primarily for testing)."""
    globals()["_timezone_service"] = None


# Convenience functions for direct use
def get_local_timezone_name() -> str:
    """Get the IANA name of the local timezone."""
    return get_timezone_service().get_local_timezone_name()


def to_millis(value: Instant) -> int:
    """Convert a datetime or millis to epoch millis."""
    return get_timezone_service().to_millis(value)


def from_millis(millis: int, tz: Optional[tzinfo] = None) -> datetime:
    """Convert epoch millis to an aware datetime."""
    return get_timezone_service().from_millis(millis, tz)
