"""
Time sources for registry timestamps.
[CTX:PBI-1:1-3:CLOCK]

``updatedAt`` must advance strictly on every mutation, even when two
mutations land within the resolution of the system clock. The helpers here
produce ISO-8601 UTC timestamps and bump them past the previous value when
needed.
"""
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


# [CTX:PBI-1:1-3:CLOCK] TimeProvider protocol for testability
class TimeProvider(ABC):
    """Protocol for providing time values, allows injection of fake time in tests."""

    @abstractmethod
    def now(self) -> float:
        """Return current time in seconds since epoch."""
        pass


class SystemTimeProvider(TimeProvider):
    """Real time provider using system clock."""

    def now(self) -> float:
        return time.time()


class FakeTimeProvider(TimeProvider):
    """Fake time provider for deterministic tests."""

    def __init__(self, initial_time: float = 1_700_000_000.0):
        self._current_time = initial_time
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._current_time

    def advance(self, seconds: float) -> None:
        """Advance time by given seconds."""
        with self._lock:
            self._current_time += seconds

    def set(self, time: float) -> None:
        """Set absolute time."""
        with self._lock:
            self._current_time = time


def format_timestamp(moment: float | datetime) -> str:
    """Format epoch seconds or an aware datetime as an ISO-8601 UTC string with microseconds."""
    if not isinstance(moment, datetime):
        moment = datetime.fromtimestamp(moment, tz=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; None if unparsable."""
    try:
        # Registries written by older tooling use a trailing "Z"
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(time_provider: TimeProvider, previous: Optional[str] = None) -> str:
    """
    Produce a timestamp strictly later than ``previous``.

    Args:
        time_provider: Source of the current time
        previous: Last recorded timestamp, if any

    Returns:
        ISO-8601 UTC timestamp; the current time, or ``previous`` plus one
        microsecond when the clock has not moved past it
    """
    current = datetime.fromtimestamp(time_provider.now(), tz=timezone.utc)
    last = parse_timestamp(previous) if previous else None
    if last is not None and current <= last:
        current = last + timedelta(microseconds=1)
    return format_timestamp(current)
