"""Performance monitoring for the instance cache."""

from .performance import (
    MetricType,
    PerformanceLogger,
    PerformanceMetric,
    get_performance_logger,
    init_performance_logging,
    performance_monitor,
    performance_timer,
)

__all__ = [
    "MetricType",
    "PerformanceLogger",
    "PerformanceMetric",
    "get_performance_logger",
    "init_performance_logging",
    "performance_monitor",
    "performance_timer",
]
