"""Configuration package."""

from .settings import CalendarCacheSettings, LoggingSettings, get_settings, reset_settings

__all__ = ["CalendarCacheSettings", "LoggingSettings", "get_settings", "reset_settings"]
