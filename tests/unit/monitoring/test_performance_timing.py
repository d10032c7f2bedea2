"""Unit tests for performance timing helpers."""

import asyncio
import logging
from pathlib import Path

import pytest

from calendarcache.config.settings import CalendarCacheSettings
from calendarcache.monitoring.performance import (
    MetricType,
    PerformanceLogger,
    PerformanceMetric,
    get_performance_logger,
    init_performance_logging,
    performance_monitor,
    performance_timer,
)


class TestPerformanceLogger:
    """Tests for PerformanceLogger."""

    def test_stop_timer_when_started_then_records_duration(self) -> None:
        perf = PerformanceLogger()

        timer_id = perf.start_timer("expand_window", "expansion")
        duration = perf.stop_timer(timer_id, "expansion", "expand_window")

        assert duration >= 0
        summary = perf.get_performance_summary()
        assert summary["expansion.expand_window"]["count"] == 1

    def test_stop_timer_when_unknown_id_then_returns_zero(self) -> None:
        assert PerformanceLogger().stop_timer("missing") == 0.0

    def test_log_metric_when_over_threshold_then_warns(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        perf = PerformanceLogger()
        perf.timing_threshold = 0.1

        with caplog.at_level(logging.WARNING, logger="calendarcache.performance"):
            perf.log_metric(
                PerformanceMetric(
                    name="acquire_range_duration",
                    metric_type=MetricType.TIMER,
                    value=0.5,
                    component="expansion",
                    operation="acquire_range",
                )
            )

        assert "Slow operation expansion.acquire_range" in caplog.text

    def test_log_metric_when_disabled_then_nothing_recorded(
        self, test_settings: CalendarCacheSettings
    ) -> None:
        perf = PerformanceLogger(test_settings)

        perf.log_database_performance("insert", 0.01, rows_affected=3)

        assert perf.enabled is False
        assert perf.get_performance_summary() == {}


class TestPerformanceDecorators:
    """Tests for performance_timer and performance_monitor."""

    def test_performance_timer_when_block_raises_then_still_recorded(self) -> None:
        perf = PerformanceLogger()

        with pytest.raises(RuntimeError), performance_timer("query", "cache", logger=perf):
            raise RuntimeError("boom")

        assert perf.get_performance_summary()["cache.query"]["count"] == 1

    @pytest.mark.asyncio
    async def test_performance_monitor_when_coroutine_then_times_awaited_call(
        self, tmp_path: Path
    ) -> None:
        perf = init_performance_logging(CalendarCacheSettings(config_dir=tmp_path))

        @performance_monitor("slow_query", "cache")
        async def slow_query() -> str:
            await asyncio.sleep(0.01)
            return "done"

        assert asyncio.iscoroutinefunction(slow_query)
        assert await slow_query() == "done"
        assert get_performance_logger() is perf
        assert perf.get_performance_summary()["cache.slow_query"]["max"] >= 0.01

    def test_performance_monitor_when_plain_function_then_defaults_names(self) -> None:
        perf = init_performance_logging(None)

        @performance_monitor()
        def compute() -> int:
            return 42

        assert compute() == 42
        assert any(key.endswith(".compute") for key in perf.get_performance_summary())
