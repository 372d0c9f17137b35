"""
Injected time source.

Services, importers and the job queue take a ``Clock`` instead of calling
``datetime.now()``, so session numbers, timestamps and retry schedules are
reproducible under test.  All clocks return timezone-aware UTC datetimes.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class DeterministicClock:
    """Frozen time that moves only when a test calls ``advance()``."""

    def __init__(self, start: datetime = DEFAULT_TEST_TIME):
        self._current = ensure_utc(start)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
