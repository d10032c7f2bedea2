"""Overlay of recurrence exceptions onto expanded occurrences."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Union

from .models import EventStatus, Instance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlainOccurrence:
    """Instance of a non-recurring event."""

    instance: Instance


@dataclass(frozen=True)
class RecurringOccurrence:
    """Instance generated by expanding a recurrence."""

    instance: Instance


@dataclass(frozen=True)
class ExceptionOccurrence:
    """Instance of an event that overrides one occurrence of a recurrence.

    A cancelled exception only removes the occurrence it targets and is
    never emitted itself.
    """

    instance: Instance
    original_event: str
    original_instance_time: int
    status: EventStatus = EventStatus.CONFIRMED

    @property
    def cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED


Candidate = Union[PlainOccurrence, RecurringOccurrence, ExceptionOccurrence]


class OverlayResolver:
    """Collects candidate instances per family key and applies exceptions.

    Candidates are keyed by the sync id of the row that produced them. Each
    exception removes the occurrences of its ``original_event`` family that
    start at its ``original_instance_time``. An exception whose target is
    missing stays as a standalone instance.
    """

    def __init__(self) -> None:
        self._families: dict[Optional[str], list[Candidate]] = defaultdict(list)

    def add(self, family_key: Optional[str], candidate: Candidate) -> None:
        self._families[family_key].append(candidate)

    def __len__(self) -> int:
        return sum(len(candidates) for candidates in self._families.values())

    def resolve(self) -> list[Instance]:
        """Apply every exception and return the instances to persist."""
        exceptions = [
            candidate
            for candidates in self._families.values()
            for candidate in candidates
            if isinstance(candidate, ExceptionOccurrence)
        ]

        for exception in exceptions:
            targets = self._families.get(exception.original_event)
            if not targets:
                continue

            remaining = [
                candidate
                for candidate in targets
                if isinstance(candidate, ExceptionOccurrence)
                or candidate.instance.begin != exception.original_instance_time
            ]
            if len(remaining) != len(targets):
                logger.debug(
                    f"Exception event {exception.instance.event_id} replaced "
                    f"{len(targets) - len(remaining)} occurrence(s) of {exception.original_event}"
                )
            self._families[exception.original_event] = remaining

        return [
            candidate.instance
            for candidates in self._families.values()
            for candidate in candidates
            if not (isinstance(candidate, ExceptionOccurrence) and candidate.cancelled)
        ]
