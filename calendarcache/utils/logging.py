"""Logging configuration and setup utilities."""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from ..config.settings import CalendarCacheSettings

# Custom log level between INFO(20) and DEBUG(10)
VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")


def verbose(self: logging.Logger, message: Any, *args: Any, **kwargs: Any) -> None:
    """Log at VERBOSE, between DEBUG and INFO, for per-expansion summaries."""
    if self.isEnabledFor(VERBOSE):
        self._log(VERBOSE, message, args, **kwargs)


logging.Logger.verbose = verbose  # type: ignore[attr-defined]


def get_log_level(level_name: str) -> int:
    """Numeric level for a level name, including VERBOSE.

    Raises:
        AttributeError: If the name is not a logging level
    """
    level_name = level_name.upper()
    if level_name == "VERBOSE":
        return VERBOSE
    level: int = getattr(logging, level_name)
    return level


class AutoColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when stderr is a color terminal."""

    COLORS = {
        "DEBUG": "\033[35m",
        "VERBOSE": "\033[32m",
        "INFO": "\033[34m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[31m\033[1m",
    }
    RESET = "\033[0m"

    def __init__(self, *args: Any, enable_colors: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.use_colors = enable_colors and self._terminal_supports_color()

    @staticmethod
    def _terminal_supports_color() -> bool:
        if not hasattr(sys.stderr, "isatty") or not sys.stderr.isatty():
            return False
        return os.environ.get("TERM", "").lower() not in ("", "dumb")

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return formatted
        return formatted.replace(record.levelname, f"{color}{record.levelname}{self.RESET}", 1)


class TimestampedFileHandler(logging.FileHandler):
    """Handler that creates timestamped log files per execution."""

    def __init__(
        self, log_dir: Union[str, Path], prefix: str = "calendarcache", max_files: int = 5
    ) -> None:
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.max_files = max_files

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = self.log_dir / f"{prefix}_{timestamp}.log"

        self.log_dir.mkdir(parents=True, exist_ok=True)
        super().__init__(str(log_path), encoding="utf-8")

        self.cleanup_old_files()

    def cleanup_old_files(self) -> None:
        """Remove log files beyond max_files limit, keeping most recent."""
        log_files = list(self.log_dir.glob(f"{self.prefix}_*.log"))

        if len(log_files) > self.max_files:
            log_files.sort(key=lambda f: f.stat().st_mtime, reverse=True)

            for old_file in log_files[self.max_files :]:
                try:
                    old_file.unlink()
                except OSError:
                    logging.getLogger(__name__).debug(f"Could not remove old log file {old_file}")


def setup_logging(settings: "CalendarCacheSettings") -> logging.Logger:
    """Configure the ``calendarcache`` logger hierarchy from settings.

    Args:
        settings: Application settings carrying a ``logging`` section

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("calendarcache")
    logger.setLevel(logging.DEBUG)  # Allow all levels, handlers will filter
    logger.handlers.clear()

    if settings.logging.console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(get_log_level(settings.logging.console_level))
        console_handler.setFormatter(
            AutoColoredFormatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%H:%M:%S",
                enable_colors=settings.logging.console_colors,
            )
        )
        logger.addHandler(console_handler)

    if settings.logging.file_enabled:
        if settings.logging.file_directory:
            log_dir = Path(settings.logging.file_directory)
        else:
            log_dir = settings.data_dir / "logs"

        file_handler = TimestampedFileHandler(
            log_dir=log_dir,
            prefix=settings.logging.file_prefix,
            max_files=settings.logging.max_log_files,
        )
        file_handler.setLevel(get_log_level(settings.logging.file_level))

        if settings.logging.include_function_names:
            file_format = (
                "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
            )
        else:
            file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        file_handler.setFormatter(logging.Formatter(file_format, datefmt="%Y-%m-%d %H:%M:%S"))

        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {file_handler.baseFilename}")

    # Set third-party library log levels to reduce noise
    third_party_level = get_log_level(settings.logging.third_party_level)
    for lib in ["aiosqlite", "asyncio"]:
        logging.getLogger(lib).setLevel(third_party_level)

    logger.debug("Logging initialized")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger namespaced under ``calendarcache``."""
    if name.startswith("calendarcache"):
        return logging.getLogger(name)
    return logging.getLogger(f"calendarcache.{name}")
