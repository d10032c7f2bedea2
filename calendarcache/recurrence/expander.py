"""Recurrence expansion backed by python-dateutil."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Optional

from dateutil.rrule import rrule, rrulestr, rruleset

from ..timezone.service import TimezoneError, TimezoneService, get_timezone_service
from .exceptions import RecurrenceParseError

UTC = timezone.utc

logger = logging.getLogger(__name__)

_UNTIL_RE = re.compile(r"UNTIL=([0-9TZ]+)", re.IGNORECASE)


@dataclass(frozen=True)
class RecurrenceSet:
    """RRULE/RDATE/EXRULE/EXDATE values of one event, newline separated per kind."""

    rrule: Optional[str] = None
    rdate: Optional[str] = None
    exrule: Optional[str] = None
    exdate: Optional[str] = None

    @classmethod
    def from_event(cls, event: Any) -> "RecurrenceSet":
        """Build a recurrence set from any object carrying the four recurrence fields."""
        return cls(
            rrule=event.rrule or None,
            rdate=event.rdate or None,
            exrule=event.exrule or None,
            exdate=event.exdate or None,
        )


def _split_lines(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [line.strip() for line in value.splitlines() if line.strip()]


class RecurrenceExpander:
    """Expands recurrence sets into occurrence start instants.

    The anchor is the event start as an aware datetime in the event's own
    timezone, so wall-clock rules keep their local time across DST changes.
    The anchor is always the first occurrence unless an EXDATE removes it.
    """

    def __init__(self, timezone_service: Optional[TimezoneService] = None):
        """Initialize the expander.

        Args:
            timezone_service: Service used for TZID lookups and millis conversion
        """
        self.timezone_service = timezone_service or get_timezone_service()

    def expand(
        self,
        anchor: datetime,
        recurrence: RecurrenceSet,
        begin_ms: int,
        end_ms: int,
    ) -> list[int]:
        """Occurrence starts within the inclusive window ``[begin_ms, end_ms]``.

        Args:
            anchor: Aware start of the first occurrence
            recurrence: Rules and dates to expand
            begin_ms: Window start in epoch millis
            end_ms: Window end in epoch millis

        Returns:
            Sorted, de-duplicated occurrence starts in epoch millis

        Raises:
            RecurrenceParseError: If any rule or date list is malformed
        """
        if end_ms < begin_ms:
            return []

        rule_set = self.build_ruleset(anchor, recurrence)
        window_start = self.timezone_service.from_millis(begin_ms)
        window_end = self.timezone_service.from_millis(end_ms)

        try:
            occurrences = rule_set.between(window_start, window_end, inc=True)
        except (ValueError, TypeError) as e:
            raise RecurrenceParseError(f"Failed to expand recurrence: {e}") from e

        return sorted({self.timezone_service.to_millis(dt) for dt in occurrences})

    def last_occurrence(self, anchor: datetime, recurrence: RecurrenceSet) -> Optional[int]:
        """Start of the final occurrence, or None when the recurrence is unbounded.

        Raises:
            RecurrenceParseError: If any rule or date list is malformed
        """
        rule_set = self.build_ruleset(anchor, recurrence)

        for rule in rule_set._rrule:  # noqa: SLF001
            if rule._count is None and rule._until is None:  # noqa: SLF001
                return None

        last: Optional[datetime] = None
        try:
            for occurrence in rule_set:
                last = occurrence
        except (ValueError, TypeError) as e:
            raise RecurrenceParseError(f"Failed to expand recurrence: {e}") from e

        return self.timezone_service.to_millis(last or anchor)

    def build_ruleset(self, anchor: datetime, recurrence: RecurrenceSet) -> rruleset:
        """Build a dateutil rruleset for the recurrence anchored at ``anchor``."""
        if anchor.tzinfo is None:
            anchor = anchor.replace(tzinfo=UTC)
        tz = anchor.tzinfo

        rule_set = rruleset()
        rule_set.rdate(anchor)

        for line in _split_lines(recurrence.rrule):
            rule_set.rrule(self._parse_rule(line, anchor))
        for line in _split_lines(recurrence.exrule):
            rule_set.exrule(self._parse_rule(line, anchor))
        for dt in self._parse_date_list(recurrence.rdate, tz):
            rule_set.rdate(dt)
        for dt in self._parse_date_list(recurrence.exdate, tz):
            rule_set.exdate(dt)

        return rule_set

    def _parse_rule(self, line: str, anchor: datetime) -> rrule:
        """Parse one RRULE or EXRULE line against the anchor."""
        name, sep, value = line.partition(":")
        body = value if sep and name.upper() in ("RRULE", "EXRULE") else line
        body = _UNTIL_RE.sub(lambda m: f"UNTIL={self._normalize_until(m.group(1), anchor)}", body)

        try:
            parsed = rrulestr(body, dtstart=anchor)
        except (ValueError, TypeError, KeyError) as e:
            raise RecurrenceParseError(f"Invalid recurrence rule '{line}': {e}", line) from e

        if not isinstance(parsed, rrule):
            raise RecurrenceParseError(f"Expected a single recurrence rule: '{line}'", line)
        return parsed

    def _normalize_until(self, until: str, anchor: datetime) -> str:
        """Express a floating or date-only UNTIL as a UTC instant.

        dateutil refuses to mix a timezone-aware anchor with a floating UNTIL,
        so UNTIL values are pinned to the anchor's timezone and converted. A
        date-only UNTIL covers the whole of that day.
        """
        if until.upper().endswith("Z"):
            return until.upper()

        parsed = self._parse_datetime(until, anchor.tzinfo)
        if "T" not in until.upper():
            parsed = parsed.replace(hour=23, minute=59, second=59)
        return parsed.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")

    def _parse_date_list(self, value: Optional[str], default_tz: Optional[tzinfo]) -> list[datetime]:
        """Parse RDATE/EXDATE values.

        Each line is a comma separated list, optionally prefixed by
        ``TZID=<zone>:`` (property parameter form) or ``<zone>;`` (provider form).
        """
        dates: list[datetime] = []
        for line in _split_lines(value):
            tz = default_tz
            body = line

            params, sep, rest = body.partition(":")
            if sep and not params[:1].isdigit():
                for param in params.split(";"):
                    key, _, param_value = param.partition("=")
                    if key.strip().upper() == "TZID" and param_value:
                        tz = self._resolve_timezone(param_value.strip())
                body = rest
            elif ";" in body:
                tzid, _, body = body.partition(";")
                tz = self._resolve_timezone(tzid.strip())

            for item in body.split(","):
                item = item.strip()
                if item:
                    dates.append(self._parse_datetime(item, tz))
        return dates

    def _resolve_timezone(self, name: str) -> tzinfo:
        try:
            return self.timezone_service.get_timezone(name)
        except TimezoneError as e:
            raise RecurrenceParseError(str(e), name) from e

    def _parse_datetime(self, datetime_str: str, tz: Optional[tzinfo]) -> datetime:
        """Parse a date or date-time value in basic or extended format.

        Args:
            datetime_str: Value such as ``20250623T083000Z`` or ``2025-06-23``
            tz: Timezone for floating values

        Returns:
            Aware datetime

        Raises:
            RecurrenceParseError: If the value matches no known format
        """
        dt_str = datetime_str.rstrip("Zz")

        formats = [
            "%Y%m%dT%H%M%S",  # 20250623T083000
            "%Y-%m-%dT%H:%M:%S",  # 2025-06-23T08:30:00
            "%Y%m%d",  # 20250623
            "%Y-%m-%d",  # 2025-06-23
        ]

        for fmt in formats:
            try:
                dt = datetime.strptime(dt_str, fmt)
            except ValueError:  # noqa: PERF203
                continue
            if datetime_str[-1:] in ("Z", "z"):
                return dt.replace(tzinfo=UTC)
            return dt.replace(tzinfo=tz or UTC)

        raise RecurrenceParseError(f"Unable to parse datetime: {datetime_str}", datetime_str)
