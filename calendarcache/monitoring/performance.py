"""Performance timing for cache expansion and query operations."""

import asyncio
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Optional, Union

from ..utils.logging import get_logger


class MetricType(Enum):
    """Types of performance metrics."""

    TIMER = "timer"
    DATABASE = "database"


@dataclass
class PerformanceMetric:
    """Structured performance metric data."""

    metric_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    metric_type: MetricType = MetricType.TIMER
    value: Union[float, int] = 0
    unit: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: str = ""
    operation: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class PerformanceLogger:
    """Collects operation timings and warns about slow operations."""

    def __init__(self, settings: Optional[Any] = None) -> None:
        self.settings = settings
        self.logger = get_logger("performance")
        self.enabled = True
        self.timing_threshold = 1.0
        self.cache_size = 500
        self._metrics_cache: deque[PerformanceMetric] = deque(maxlen=self.cache_size)
        self._operation_timers: dict[str, float] = {}
        self._lock = threading.Lock()

        logging_settings = getattr(settings, "logging", None)
        if logging_settings is not None:
            self.enabled = logging_settings.performance_enabled
            self.timing_threshold = logging_settings.performance_timing_threshold

    def log_metric(self, metric: PerformanceMetric) -> None:
        """Record a metric and emit it at DEBUG level."""
        if not self.enabled:
            return

        with self._lock:
            self._metrics_cache.append(metric)

        self.logger.debug(
            f"{metric.component}.{metric.operation} {metric.name}={metric.value}{metric.unit}"
        )
        self._check_thresholds(metric)

    def start_timer(self, operation: str, component: str = "") -> str:
        """Start a timer for an operation.

        Args:
            operation: Name of the operation being timed
            component: Component performing the operation

        Returns:
            Timer ID for stopping the timer
        """
        timer_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        with self._lock:
            self._operation_timers[timer_id] = time.perf_counter()
        return timer_id

    def stop_timer(
        self,
        timer_id: str,
        component: str = "",
        operation: str = "",
        metadata: Optional[dict[str, Any]] = None,
    ) -> float:
        """Stop a timer and log the duration.

        Returns:
            Duration in seconds
        """
        end_time = time.perf_counter()

        with self._lock:
            start_time = self._operation_timers.pop(timer_id, None)

        if start_time is None:
            self.logger.warning(f"Timer {timer_id} not found")
            return 0.0

        duration = end_time - start_time
        self.log_metric(
            PerformanceMetric(
                name=f"{operation}_duration" if operation else "operation_duration",
                metric_type=MetricType.TIMER,
                value=duration,
                unit="s",
                component=component,
                operation=operation,
                metadata={"timer_id": timer_id, **(metadata or {})},
            )
        )
        return duration

    def log_database_performance(
        self,
        query_type: str,
        duration: float,
        rows_affected: int = 0,
        component: str = "database",
    ) -> None:
        """Log database operation performance."""
        self.log_metric(
            PerformanceMetric(
                name="database_query_duration",
                metric_type=MetricType.DATABASE,
                value=duration,
                unit="s",
                component=component,
                operation=query_type,
                metadata={"rows_affected": rows_affected},
            )
        )

    def _check_thresholds(self, metric: PerformanceMetric) -> None:
        """Warn when a timed operation exceeds the configured threshold."""
        if metric.metric_type not in (MetricType.TIMER, MetricType.DATABASE):
            return

        duration = float(metric.value)
        if duration > self.timing_threshold:
            self.logger.warning(
                f"Slow operation {metric.component}.{metric.operation}: "
                f"{duration:.2f}s exceeds {self.timing_threshold}s threshold"
            )

    def get_performance_summary(self) -> dict[str, Any]:
        """Summarize recorded timings per operation."""
        with self._lock:
            metrics = list(self._metrics_cache)

        summary: dict[str, Any] = {}
        for metric in metrics:
            key = f"{metric.component}.{metric.operation}"
            entry = summary.setdefault(key, {"count": 0, "total": 0.0, "max": 0.0})
            entry["count"] += 1
            entry["total"] += float(metric.value)
            entry["max"] = max(entry["max"], float(metric.value))

        for entry in summary.values():
            entry["avg"] = entry["total"] / entry["count"]
        return summary


@contextmanager
def performance_timer(
    operation: str,
    component: str = "",
    logger: Optional[PerformanceLogger] = None,
) -> Any:
    """
    Context manager for timing operations.

    Usage:
        with performance_timer("expand_window", "expansion"):
            # ... operation code ...
            pass
    """
    perf_logger = logger or get_performance_logger()
    timer_id = perf_logger.start_timer(operation, component)

    try:
        yield timer_id
    finally:
        perf_logger.stop_timer(timer_id, component, operation)


def performance_monitor(operation: str = "", component: str = "") -> Callable[..., Any]:
    """
    Decorator for automatic performance monitoring of functions.

    Coroutine functions are timed across their awaited execution.

    Args:
        operation: Operation name (defaults to function name)
        component: Component name (defaults to module name)
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        op_name = operation or func.__name__
        comp_name = component or func.__module__.split(".")[-1]

        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with performance_timer(op_name, comp_name):
                    return await func(*args, **kwargs)

            return async_wrapper

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with performance_timer(op_name, comp_name):
                return func(*args, **kwargs)

        return wrapper

    return decorator


# Global performance logger instance
_performance_logger: Optional[PerformanceLogger] = None


def get_performance_logger(settings: Optional[Any] = None) -> PerformanceLogger:
    """Get or create global performance logger instance."""
    if globals()["_performance_logger"] is None:
        globals()["_performance_logger"] = PerformanceLogger(settings)
    return globals()["_performance_logger"]  # type: ignore[no-any-return]


def init_performance_logging(settings: Any) -> PerformanceLogger:
    """Initialize performance logging system with settings."""
    globals()["_performance_logger"] = PerformanceLogger(settings)
    return globals()["_performance_logger"]  # type: ignore[no-any-return]
