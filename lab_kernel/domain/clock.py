"""
Injectable clocks.

Services, selectors and the date gate never read the wall clock directly;
they receive a ``Clock``.  "Today" for the date gate is the UTC calendar
date of ``now()``, so an experiment dated 2025-03-20 stays allocatable
for non-admins until 23:59:59 UTC that day.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone


class Clock(ABC):
    """Source of the current instant, always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        """Business date used by the date gate and history filters."""
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when a test moves it.

    ``set_date`` pins the clock to noon UTC so that small ``advance`` steps
    never cross a day boundary by accident.
    """

    DEFAULT_START = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def set_date(self, day: date) -> None:
        self._current = datetime.combine(day, time(12), tzinfo=timezone.utc)

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)

    def tick(self) -> datetime:
        """Move forward one second and return the new instant."""
        self.advance(1)
        return self._current
