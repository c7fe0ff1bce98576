"""
core/clock.py -- Injectable wall clock.

Everything time-sensitive in the access-control core (token expiry, lockout
windows, share-link expiry) reads the time through a Clock instead of calling
datetime.now() inline. Production code uses SystemClock; tests pass a
FakeClock and advance it to simulate the passage of time.

All datetimes are timezone-aware UTC.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Real UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FakeClock:
    """Manually driven clock for tests.

    Usage:
        clock = FakeClock()
        clock.advance(minutes=15)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta) -> datetime:
        """Move the clock forward by timedelta(**delta) and return the new time."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


def to_iso(value: datetime) -> str:
    """Serialize a datetime as fixed-format UTC ISO 8601.

    A single format keeps stored timestamps lexicographically comparable in SQL.
    """
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
