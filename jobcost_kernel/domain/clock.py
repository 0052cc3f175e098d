"""
Clock -- injectable time source.

Responsibility:
    Lock expiry, undo windows, approval stamps and invoice-date checks all
    depend on "now".  Services receive a ``Clock`` through their
    constructor and never call ``datetime.now()`` themselves, so tests can
    move time forward across a lock duration or an undo window.

Architecture position:
    Kernel > Domain -- zero I/O except ``SystemClock``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()`` or ``set_time()``
    is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta()

    def now(self) -> datetime:
        return (self._fixed_time + self._offset).astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires an aware datetime")
        self._fixed_time = time
        self._offset = timedelta()

    def advance(self, seconds: float = 1) -> datetime:
        """Move the clock forward and return the new time."""
        self._offset += timedelta(seconds=seconds)
        return self.now()
