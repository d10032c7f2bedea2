"""Calendar instance cache - windowed expansion of recurring calendar events."""

__version__ = "1.0.0"
__author__ = "CalendarCache Team"
__email__ = "support@calendarcache.local"
__description__ = "Windowed instance cache for recurring calendar events backed by SQLite"

# Package metadata
__all__ = [
    "__author__",
    "__description__",
    "__email__",
    "__version__",
]
