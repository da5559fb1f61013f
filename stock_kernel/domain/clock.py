"""
Injectable time source.

Services take a Clock instead of calling ``datetime.now()`` so delivery
timestamps, receipt times and maintenance run times are reproducible in
tests.  SystemClock is the only place the wall clock is read.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Returns timezone-aware datetimes."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        """Calendar day of ``now()``; this is the ledger day for a movement."""
        return self.now().date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests. Time moves only when told to."""

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = start or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int = 1) -> None:
        self._current += timedelta(days=days)

    def tick(self) -> datetime:
        """Move forward one second and return the new time."""
        self.advance()
        return self._current
