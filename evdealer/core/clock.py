"""
Time source abstraction.

Services never call ``datetime.now`` directly; they receive a Clock so
numbering, confirmation stamps and the delivery request window can be
driven deterministically in tests.
"""

from datetime import datetime, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Supplies the current time as a timezone-aware UTC datetime."""

    def now(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be in UTC, which is how the
    persistence layer stores them.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_default_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock."""
    return _default_clock
