"""Settings management using Pydantic for type validation and configuration."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "CALENDARCACHE_"


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    # Console Logging
    console_enabled: bool = Field(default=True, description="Enable console logging")
    console_level: str = Field(
        default="INFO",
        description="Console log level: DEBUG, VERBOSE, INFO, WARNING, ERROR, CRITICAL",
    )
    console_colors: bool = Field(
        default=True, description="Enable colored console output (auto-detected)"
    )

    # File Logging
    file_enabled: bool = Field(default=False, description="Enable file logging")
    file_level: str = Field(
        default="DEBUG",
        description="File log level: DEBUG, VERBOSE, INFO, WARNING, ERROR, CRITICAL",
    )
    file_directory: Optional[str] = Field(
        default=None, description="Custom log directory (defaults to data_dir/logs)"
    )
    file_prefix: str = Field(default="calendarcache", description="Log file prefix")
    max_log_files: int = Field(default=5, description="Maximum number of log files to keep")
    include_function_names: bool = Field(
        default=True, description="Include function names and line numbers in file logs"
    )

    # Third-party Libraries
    third_party_level: str = Field(
        default="WARNING", description="Log level for third-party libraries"
    )

    # Performance Monitoring
    performance_enabled: bool = Field(default=True, description="Enable performance monitoring")
    performance_timing_threshold: float = Field(
        default=1.0, description="Log operations slower than this (seconds)"
    )


class CalendarCacheSettings(BaseSettings):
    """Application settings with environment variable support."""

    # Private attributes
    _explicit_args: set = PrivateAttr(default_factory=set)
    _env_vars_set: set = PrivateAttr(default_factory=set)

    # Application Configuration
    app_name: str = Field(default="CalendarCache", description="Application name")

    # File Paths
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config" / "calendarcache")
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".local" / "share" / "calendarcache"
    )
    database_path: Optional[Path] = Field(
        default=None, description="SQLite database file (defaults to data_dir/calendar_instances.db)"
    )

    # Timezone
    local_timezone: Optional[str] = Field(
        default=None,
        description="IANA name of the device timezone (falls back to $TZ, then UTC)",
    )
    project_in_local_timezone: bool = Field(
        default=False,
        description="Compute instance day/minute fields in the local timezone instead of the event's",
    )
    check_timezone_on_startup: bool = Field(
        default=True, description="Re-expand the current month if the local timezone changed"
    )

    # Instance Expansion
    min_expansion_span_days: int = Field(
        default=62, ge=0, description="Minimum span materialized by a single expansion"
    )
    max_assumed_duration_days: int = Field(
        default=7,
        ge=0,
        description="Look-back used to find exceptions whose original occurrence may overlap a window",
    )

    # Logging Configuration
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings, description="Logging settings"
    )

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    def __init__(self, **kwargs: Any) -> None:
        # Track which environment variables are set before calling parent
        env_vars_set = set()
        for key in os.environ:
            if key.upper().startswith(ENV_PREFIX):
                env_vars_set.add(key[len(ENV_PREFIX) :].lower())

        super().__init__(**kwargs)

        # Track which arguments were explicitly provided
        self._explicit_args = set(kwargs.keys())
        self._env_vars_set = env_vars_set

        # Load YAML configuration after basic initialization
        self._load_yaml_config()

    def _find_config_file(self) -> Optional[Path]:
        """Find config file, checking project directory first, then user home."""
        # Check project root directory first (go up from calendarcache/config to project root)
        project_root = Path(__file__).parent.parent.parent
        project_config = project_root / "config" / "config.yaml"
        if project_config.exists():
            return project_config

        # Fall back to user home directory
        user_config = self.config_dir / "config.yaml"
        if user_config.exists():
            return user_config

        return None

    def _is_overridden(self, setting: str) -> bool:
        return setting in self._explicit_args or setting in self._env_vars_set

    def _load_cache_settings(self, config_data: dict) -> None:
        """Load instance cache settings from YAML data."""
        if "cache" not in config_data:
            return

        cache_config = config_data["cache"] or {}
        cache_settings = [
            "database_path",
            "local_timezone",
            "project_in_local_timezone",
            "check_timezone_on_startup",
            "min_expansion_span_days",
            "max_assumed_duration_days",
        ]

        for setting in cache_settings:
            if setting in cache_config and not self._is_overridden(setting):
                value = cache_config[setting]
                if setting == "database_path" and value is not None:
                    value = Path(value).expanduser()
                setattr(self, setting, value)

    def _load_basic_settings(self, config_data: dict) -> None:
        """Load basic application settings from YAML data."""
        for setting in ["app_name", "data_dir"]:
            if setting in config_data and not self._is_overridden(setting):
                value = config_data[setting]
                if setting == "data_dir":
                    value = Path(value).expanduser()
                setattr(self, setting, value)

    def _load_logging_config(self, config_data: dict) -> None:
        """Load logging configuration from YAML data."""
        if "logging" not in config_data:
            return

        logging_config = config_data["logging"] or {}
        for setting in LoggingSettings.model_fields:
            if setting in logging_config:
                setattr(self.logging, setting, logging_config[setting])

    def _load_yaml_config(self) -> None:
        """Load configuration from YAML file if it exists."""
        config_file = self._find_config_file()
        if not config_file:
            return

        try:
            with config_file.open() as f:
                config_data = yaml.safe_load(f)

            if not config_data:
                return

            self._load_basic_settings(config_data)
            self._load_cache_settings(config_data)
            self._load_logging_config(config_data)

        except (OSError, yaml.YAMLError) as e:
            # Don't fail if YAML loading fails, just continue with defaults/env vars
            logging.warning(f"Could not load YAML config from {config_file}: {e}")

    @property
    def database_file(self) -> Path:
        """Path to SQLite database file."""
        if self.database_path is not None:
            return self.database_path
        return self.data_dir / "calendar_instances.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML configuration file."""
        return self.config_dir / "config.yaml"

    @property
    def min_expansion_span_ms(self) -> int:
        """Minimum expansion span in milliseconds."""
        return self.min_expansion_span_days * 24 * 60 * 60 * 1000

    @property
    def max_assumed_duration_ms(self) -> int:
        """Exception look-back in milliseconds."""
        return self.max_assumed_duration_days * 24 * 60 * 60 * 1000


# Global settings management
_settings_instance: Optional[CalendarCacheSettings] = None


def get_settings() -> CalendarCacheSettings:
    """Get the global settings instance, creating it lazily if needed.

    Returns:
        CalendarCacheSettings: The global settings instance
    """
    if globals()["_settings_instance"] is None:
        globals()["_settings_instance"] = CalendarCacheSettings()
    return globals()["_settings_instance"]


def reset_settings() -> None:
    """Reset the global settings instance (primarily for testing)."""
    globals()["_settings_instance"] = None
