"""
Clock
=====

Injectable time source so SLA arithmetic never calls ``datetime.now()``
directly and can be driven deterministically in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock interface. ``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""


class SystemClock(Clock):
    """Production clock returning real system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Returns the same value on repeated calls until ``advance()`` or
    ``set_time()`` is called.
    """

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._current = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._current = time

    def advance(self, seconds: float = 0, days: float = 0) -> datetime:
        """Advance the clock and return the new time."""
        self._current = self._current + timedelta(seconds=seconds, days=days)
        return self._current
