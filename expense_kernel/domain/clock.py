"""
Clock -- injectable time source.

Services read the time through a ``Clock`` passed to their constructor and
hand the value down to the engines, which never read time themselves.
Submission timestamps, ``acted_at`` stamps and history entry times all
come from one injected clock, so tests can pin them exactly.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place the kernel reads
    the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current time.  ``now()`` is always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Guarantees:
        - Repeated ``now()`` calls return the same instant until
          ``advance()``, ``tick()`` or ``set_time()`` is called.
        - Naive start times are rejected; every instant is aware.
    """

    def __init__(self, fixed_time: datetime | None = None):
        start = fixed_time or DEFAULT_TEST_TIME
        if start.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware time")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware time")
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new instant."""
        self.advance(1)
        return self._current
