"""
Timezone package for the instance cache.

Example usage:
    >>> from calendarcache.timezone import compute_time_fields, get_timezone_service
    >>> service = get_timezone_service()
    >>> fields = compute_time_fields(begin_ms, end_ms, service.get_local_timezone())
"""

from .projection import MINUTES_PER_DAY, TimeFields, compute_time_fields, project
from .service import (
    JULIAN_DAY_OFFSET,
    MILLIS_PER_DAY,
    Instant,
    TimezoneError,
    TimezoneService,
    from_millis,
    get_local_timezone_name,
    get_timezone_service,
    julian_day,
    reset_timezone_service,
    to_millis,
)

__all__ = [
    "JULIAN_DAY_OFFSET",
    "MILLIS_PER_DAY",
    "MINUTES_PER_DAY",
    "Instant",
    "TimeFields",
    "TimezoneError",
    "TimezoneService",
    "compute_time_fields",
    "from_millis",
    "get_local_timezone_name",
    "get_timezone_service",
    "julian_day",
    "project",
    "reset_timezone_service",
    "to_millis",
]
