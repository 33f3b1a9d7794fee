"""Injectable time provider so policy evaluation is deterministic."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from mess_backend.config import settings


class Clock(ABC):
    """Source of the current instant plus the service's local-day helpers."""

    def __init__(self, tz_name: str | None = None) -> None:
        self.tz = ZoneInfo(tz_name or settings.TIMEZONE)

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()

    def start_of_day(self, day: date) -> datetime:
        """00:00:00 of *day* in the service's local timezone."""
        return datetime.combine(day, time.min, tzinfo=self.tz)


class SystemClock(Clock):
    """Wall-clock time, always timezone-aware."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Frozen clock for tests and replays."""

    def __init__(self, instant: datetime, tz_name: str | None = None) -> None:
        super().__init__(tz_name)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant


_system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency; override in tests with a ``FixedClock``."""
    return _system_clock
