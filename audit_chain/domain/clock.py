"""
Injectable time source.

``created_at`` is an input to every block hash, so services never read the
wall clock themselves: they are handed a Clock.  Production code uses
``SystemClock``; tests pin time with ``DeterministicClock`` so hashes are
reproducible.

All clocks return timezone-aware UTC datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current UTC time, injected into services."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Repeated ``now()`` calls return the same instant.  ``tick()`` moves one
    second forward, which is how tests give consecutive blocks distinct
    timestamps.
    """

    def __init__(self, start: datetime | None = None):
        self._current = _as_utc(start or DEFAULT_EPOCH)

    def now(self) -> datetime:
        return self._current

    def set_time(self, instant: datetime) -> None:
        self._current = _as_utc(instant)

    def advance(self, seconds: float = 1, microseconds: int = 0) -> None:
        self._current += timedelta(seconds=seconds, microseconds=microseconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
