"""Unit tests for recurrence expansion."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from calendarcache.recurrence.exceptions import RecurrenceParseError
from calendarcache.recurrence.expander import RecurrenceExpander, RecurrenceSet
from calendarcache.timezone.service import TimezoneService

UTC = timezone.utc
ANCHOR = datetime(2025, 3, 3, 10, 0, tzinfo=UTC)


def _ms(value: datetime) -> int:
    return int(value.timestamp()) * 1000


@pytest.fixture
def expander() -> RecurrenceExpander:
    return RecurrenceExpander(TimezoneService("UTC"))


def _window(days: int = 60) -> tuple[int, int]:
    return _ms(ANCHOR - timedelta(days=1)), _ms(ANCHOR + timedelta(days=days))


class TestExpand:
    """Tests for expanding a recurrence within a window."""

    def test_expand_when_count_bounded_then_first_occurrence_is_anchor(
        self, expander: RecurrenceExpander
    ) -> None:
        starts = expander.expand(ANCHOR, RecurrenceSet(rrule="FREQ=DAILY;COUNT=5"), *_window())

        assert len(starts) == 5
        assert starts[0] == _ms(ANCHOR)
        assert starts == sorted(starts)

    def test_expand_when_window_inside_unbounded_rule_then_clips_to_window(
        self, expander: RecurrenceExpander
    ) -> None:
        begin = _ms(datetime(2025, 3, 10, tzinfo=UTC))
        end = _ms(datetime(2025, 3, 24, 23, 59, tzinfo=UTC))

        starts = expander.expand(ANCHOR, RecurrenceSet(rrule="FREQ=WEEKLY"), begin, end)

        assert starts == [
            _ms(datetime(2025, 3, 10, 10, tzinfo=UTC)),
            _ms(datetime(2025, 3, 17, 10, tzinfo=UTC)),
            _ms(datetime(2025, 3, 24, 10, tzinfo=UTC)),
        ]

    def test_expand_when_rrule_has_property_prefix_then_strips_it(
        self, expander: RecurrenceExpander
    ) -> None:
        starts = expander.expand(
            ANCHOR, RecurrenceSet(rrule="RRULE:FREQ=DAILY;COUNT=2"), *_window()
        )

        assert len(starts) == 2

    def test_expand_when_exdate_matches_then_occurrence_removed(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rrule="FREQ=DAILY;COUNT=5", exdate="20250304T100000Z")

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert len(starts) == 4
        assert _ms(datetime(2025, 3, 4, 10, tzinfo=UTC)) not in starts

    def test_expand_when_exdate_matches_anchor_then_anchor_removed(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rrule="FREQ=DAILY;COUNT=3", exdate="20250303T100000Z")

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert starts[0] == _ms(datetime(2025, 3, 4, 10, tzinfo=UTC))
        assert len(starts) == 2

    def test_expand_when_exdate_has_tzid_parameter_then_resolves_zone(
        self, expander: RecurrenceExpander
    ) -> None:
        # 05:00 EST is 10:00Z
        recurrence = RecurrenceSet(
            rrule="FREQ=DAILY;COUNT=3", exdate="TZID=America/New_York:20250304T050000"
        )

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert _ms(datetime(2025, 3, 4, 10, tzinfo=UTC)) not in starts

    def test_expand_when_exdate_uses_zone_prefix_then_resolves_zone(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(
            rrule="FREQ=DAILY;COUNT=3", exdate="America/New_York;20250304T050000"
        )

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert len(starts) == 2

    def test_expand_when_rdate_added_then_included_with_rule_occurrences(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rrule="FREQ=DAILY;COUNT=2", rdate="20250310T150000Z")

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert starts == [
            _ms(ANCHOR),
            _ms(datetime(2025, 3, 4, 10, tzinfo=UTC)),
            _ms(datetime(2025, 3, 10, 15, tzinfo=UTC)),
        ]

    def test_expand_when_only_rdates_then_anchor_and_dates_returned(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rdate="20250305T100000Z,20250307T100000Z")

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert len(starts) == 3

    def test_expand_when_until_is_floating_then_bound_is_inclusive(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rrule="FREQ=DAILY;UNTIL=20250305T100000")

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert len(starts) == 3

    def test_expand_when_until_is_date_only_then_covers_whole_day(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rrule="FREQ=DAILY;UNTIL=20250305")

        starts = expander.expand(ANCHOR, recurrence, *_window())

        assert starts[-1] == _ms(datetime(2025, 3, 5, 10, tzinfo=UTC))

    def test_expand_when_anchor_zone_crosses_dst_then_keeps_wall_clock_time(
        self, expander: RecurrenceExpander
    ) -> None:
        anchor = datetime(2025, 3, 7, 9, 0, tzinfo=ZoneInfo("America/New_York"))

        starts = expander.expand(anchor, RecurrenceSet(rrule="FREQ=DAILY;COUNT=4"), *_window())

        # 09:00 EST is 14:00Z, 09:00 EDT from March 9 is 13:00Z
        assert starts[1] == _ms(datetime(2025, 3, 8, 14, tzinfo=UTC))
        assert starts[2] == _ms(datetime(2025, 3, 9, 13, tzinfo=UTC))
        assert starts[3] - starts[2] == 24 * 60 * 60 * 1000

    def test_expand_when_window_reversed_then_returns_empty(
        self, expander: RecurrenceExpander
    ) -> None:
        begin, end = _window()

        assert expander.expand(ANCHOR, RecurrenceSet(rrule="FREQ=DAILY"), end, begin) == []

    @pytest.mark.parametrize(
        "recurrence",
        [
            RecurrenceSet(rrule="FREQ=SOMETIMES"),
            RecurrenceSet(rrule="FREQ=WEEKLY;BYDAY=XX"),
            RecurrenceSet(rrule="FREQ=DAILY", exdate="not-a-date"),
            RecurrenceSet(rrule="FREQ=DAILY", exdate="TZID=Nowhere/Land:20250304T050000"),
        ],
    )
    def test_expand_when_recurrence_malformed_then_raises_parse_error(
        self, expander: RecurrenceExpander, recurrence: RecurrenceSet
    ) -> None:
        with pytest.raises(RecurrenceParseError):
            expander.expand(ANCHOR, recurrence, *_window())


class TestLastOccurrence:
    """Tests for the final occurrence of a recurrence."""

    def test_last_occurrence_when_count_bounded_then_returns_final_start(
        self, expander: RecurrenceExpander
    ) -> None:
        last = expander.last_occurrence(ANCHOR, RecurrenceSet(rrule="FREQ=DAILY;COUNT=5"))

        assert last == _ms(datetime(2025, 3, 7, 10, tzinfo=UTC))

    def test_last_occurrence_when_unbounded_then_returns_none(
        self, expander: RecurrenceExpander
    ) -> None:
        assert expander.last_occurrence(ANCHOR, RecurrenceSet(rrule="FREQ=WEEKLY")) is None

    def test_last_occurrence_when_rdate_after_rule_end_then_returns_rdate(
        self, expander: RecurrenceExpander
    ) -> None:
        recurrence = RecurrenceSet(rrule="FREQ=DAILY;COUNT=2", rdate="20250401T080000Z")

        last = expander.last_occurrence(ANCHOR, recurrence)

        assert last == _ms(datetime(2025, 4, 1, 8, tzinfo=UTC))


class TestRecurrenceSet:
    """Tests for RecurrenceSet construction."""

    def test_from_event_when_fields_empty_then_normalizes_to_none(self) -> None:
        class Row:
            rrule = ""
            rdate = None
            exrule = ""
            exdate = "20250304T100000Z"

        recurrence = RecurrenceSet.from_event(Row())

        assert recurrence.rrule is None
        assert recurrence.exdate == "20250304T100000Z"
