"""
Time provider abstraction for deterministic testing

The ledger timestamps every entry with the injected clock. Production uses
the system clock; tests and replays use a controllable one so that two runs
hash to the same chain.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for time providers - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class RealTimeProvider:
    """Production time provider using system clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedTimeProvider:
    """
    Controllable time provider for deterministic tests

    Time only moves when the test says so, which also makes it easy to
    simulate a clock stepping backwards.
    """

    def __init__(self, initial_time: datetime | None = None) -> None:
        """
        Args:
            initial_time: Starting time (defaults to Unix epoch)
        """
        self._current_time = initial_time or datetime(1970, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        self._current_time = dt

    def advance_ms(self, milliseconds: int) -> None:
        self._current_time += timedelta(milliseconds=milliseconds)

    def advance_seconds(self, seconds: int) -> None:
        self._current_time += timedelta(seconds=seconds)


def to_epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to integer milliseconds since the Unix epoch"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def epoch_ms_to_iso(ms: int) -> str:
    """Render epoch milliseconds as "YYYY-MM-DDTHH:MM:SS.mmmZ" """
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso(time_provider: TimeProvider) -> str:
    """Current time of the given provider in the same ISO form"""
    return epoch_ms_to_iso(to_epoch_ms(time_provider.now()))


default_time_provider: TimeProvider = RealTimeProvider()
