"""Unit tests for exception overlay resolution."""

from calendarcache.cache.models import EventStatus, Instance
from calendarcache.cache.overlay import (
    ExceptionOccurrence,
    OverlayResolver,
    PlainOccurrence,
    RecurringOccurrence,
)

HOUR = 60 * 60 * 1000
WEEK = 7 * 24 * HOUR
T0 = 1_740_996_000_000  # 2025-03-03T10:00:00Z


def _instance(event_id: int, begin: int, hours: int = 1) -> Instance:
    return Instance(
        event_id=event_id,
        begin=begin,
        end=begin + hours * HOUR,
        start_day=0,
        end_day=0,
        start_minute=0,
        end_minute=60,
    )


def _resolver_with_weekly_base() -> OverlayResolver:
    resolver = OverlayResolver()
    for week in range(4):
        resolver.add("base", RecurringOccurrence(_instance(1, T0 + week * WEEK)))
    return resolver


class TestOverlayResolver:
    """Tests for OverlayResolver.resolve."""

    def test_resolve_when_no_exceptions_then_returns_everything(self) -> None:
        resolver = _resolver_with_weekly_base()
        resolver.add(None, PlainOccurrence(_instance(9, T0)))

        assert len(resolver) == 5
        assert len(resolver.resolve()) == 5

    def test_resolve_when_exception_moves_occurrence_then_replaces_original(self) -> None:
        resolver = _resolver_with_weekly_base()
        moved = _instance(2, T0 + WEEK + 2 * HOUR)
        resolver.add(
            "exc",
            ExceptionOccurrence(
                instance=moved, original_event="base", original_instance_time=T0 + WEEK
            ),
        )

        instances = resolver.resolve()

        assert len(instances) == 4
        assert moved in instances
        assert all(not (i.event_id == 1 and i.begin == T0 + WEEK) for i in instances)

    def test_resolve_when_exception_cancelled_then_occurrence_dropped(self) -> None:
        resolver = _resolver_with_weekly_base()
        resolver.add(
            "exc",
            ExceptionOccurrence(
                instance=_instance(2, T0 + WEEK),
                original_event="base",
                original_instance_time=T0 + WEEK,
                status=EventStatus.CANCELLED,
            ),
        )

        instances = resolver.resolve()

        assert len(instances) == 3
        assert {i.event_id for i in instances} == {1}

    def test_resolve_when_original_time_matches_nothing_then_exception_kept(self) -> None:
        resolver = _resolver_with_weekly_base()
        resolver.add(
            "exc",
            ExceptionOccurrence(
                instance=_instance(2, T0 + HOUR),
                original_event="base",
                original_instance_time=T0 + HOUR,
            ),
        )

        assert len(resolver.resolve()) == 5

    def test_resolve_when_original_event_unknown_then_exception_standalone(self) -> None:
        resolver = OverlayResolver()
        resolver.add(
            "exc",
            ExceptionOccurrence(
                instance=_instance(2, T0), original_event="missing", original_instance_time=T0
            ),
        )

        assert [i.event_id for i in resolver.resolve()] == [2]

    def test_resolve_when_two_exceptions_target_same_family_then_both_apply(self) -> None:
        resolver = _resolver_with_weekly_base()
        for week, status in ((1, EventStatus.CANCELLED), (2, EventStatus.CONFIRMED)):
            resolver.add(
                f"exc-{week}",
                ExceptionOccurrence(
                    instance=_instance(10 + week, T0 + week * WEEK + HOUR),
                    original_event="base",
                    original_instance_time=T0 + week * WEEK,
                    status=status,
                ),
            )

        instances = resolver.resolve()

        assert sorted(i.event_id for i in instances) == [1, 1, 12]
