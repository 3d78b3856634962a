"""
Clock -- Injectable time source.

Responsibility:
    Payment dates, audit stamps, archive and restore times, and the aging
    "as of" date all come from a Clock handed to the service or selector,
    never from ``datetime.now()`` inside business code.

Architecture position:
    Kernel > Domain.  SystemClock is the only place the kernel reads the
    wall clock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Source of the current instant.

    Guarantees:
        - ``now_utc()`` is timezone-aware and in UTC.
        - ``today()`` is the UTC calendar date of ``now_utc()``.
    """

    @abstractmethod
    def now_utc(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now_utc().date()


class SystemClock(Clock):
    """Wall-clock time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Naive datetimes passed in are taken to be UTC.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = self._as_utc(start or self.DEFAULT_START)

    @staticmethod
    def _as_utc(moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc)

    def now_utc(self) -> datetime:
        return self._current

    def advance(self, *, days: int = 0, seconds: int = 0) -> datetime:
        """Move forward and return the new time."""
        self._current += timedelta(days=days, seconds=seconds)
        return self._current
