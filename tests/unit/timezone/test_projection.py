"""Unit tests for projecting instance boundaries onto days and minutes."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from calendarcache.timezone.projection import MINUTES_PER_DAY, compute_time_fields, project
from calendarcache.timezone.service import julian_day

UTC = timezone.utc
NEW_YORK = ZoneInfo("America/New_York")


def _ms(*args: int, tz: object = UTC) -> int:
    return int(datetime(*args, tzinfo=tz).timestamp()) * 1000


class TestJulianDay:
    """Tests for julian day numbering."""

    def test_julian_day_when_unix_epoch_then_matches_reference_number(self) -> None:
        assert julian_day(date(1970, 1, 1)) == 2440588

    def test_julian_day_when_consecutive_dates_then_increments_by_one(self) -> None:
        assert julian_day(date(2025, 3, 1)) - julian_day(date(2025, 2, 28)) == 1


class TestProject:
    """Tests for the single-instant projection."""

    def test_project_when_utc_then_returns_day_and_minute(self) -> None:
        day, minute = project(_ms(2025, 3, 3, 10, 30), UTC)

        assert day == julian_day(date(2025, 3, 3))
        assert minute == 630

    def test_project_when_zone_behind_utc_then_rolls_back_a_day(self) -> None:
        day, minute = project(_ms(2025, 3, 3, 3, 0), NEW_YORK)

        assert day == julian_day(date(2025, 3, 2))
        assert minute == 22 * 60

    def test_project_when_after_dst_switch_then_uses_daylight_offset(self) -> None:
        # 2025-03-09 12:00Z is 08:00 EDT
        day, minute = project(_ms(2025, 3, 9, 12, 0), NEW_YORK)

        assert day == julian_day(date(2025, 3, 9))
        assert minute == 8 * 60


class TestComputeTimeFields:
    """Tests for instance day/minute fields."""

    def test_compute_time_fields_when_same_day_then_days_match(self) -> None:
        fields = compute_time_fields(_ms(2025, 3, 3, 10), _ms(2025, 3, 3, 11), UTC)

        assert fields.start_day == fields.end_day == julian_day(date(2025, 3, 3))
        assert fields.start_minute == 600
        assert fields.end_minute == 660

    def test_compute_time_fields_when_ending_at_midnight_then_reports_minute_1440(self) -> None:
        fields = compute_time_fields(_ms(2025, 3, 3, 23), _ms(2025, 3, 4, 0), UTC)

        assert fields.end_day == fields.start_day
        assert fields.end_minute == MINUTES_PER_DAY

    def test_compute_time_fields_when_crossing_midnight_then_ends_next_day(self) -> None:
        fields = compute_time_fields(_ms(2025, 3, 3, 23), _ms(2025, 3, 4, 1), UTC)

        assert fields.end_day == fields.start_day + 1
        assert fields.end_minute == 60

    def test_compute_time_fields_when_zero_length_at_midnight_then_keeps_minute_zero(
        self,
    ) -> None:
        instant = _ms(2025, 3, 4, 0)

        fields = compute_time_fields(instant, instant, UTC)

        assert fields.start_day == fields.end_day
        assert fields.start_minute == fields.end_minute == 0

    def test_compute_time_fields_when_all_day_span_then_stays_on_one_day(self) -> None:
        fields = compute_time_fields(_ms(2025, 3, 3), _ms(2025, 3, 4), UTC)

        assert fields.start_day == fields.end_day == julian_day(date(2025, 3, 3))
        assert fields.start_minute == 0
        assert fields.end_minute == MINUTES_PER_DAY

    def test_compute_time_fields_when_local_midnight_in_zone_then_applies_rule_in_that_zone(
        self,
    ) -> None:
        # 2025-03-04 05:00Z is midnight in New York
        fields = compute_time_fields(_ms(2025, 3, 4, 4), _ms(2025, 3, 4, 5), NEW_YORK)

        assert fields.start_day == fields.end_day == julian_day(date(2025, 3, 3))
        assert fields.start_minute == 23 * 60
        assert fields.end_minute == MINUTES_PER_DAY
