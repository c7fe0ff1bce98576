"""
auth/ratelimit.py -- Per-client login lockout.

A client (best-effort identity: the remote address) that fails to log in
max_attempts times within the lockout window is refused further logins until
the window has passed since its last failure -- even with correct credentials.
A successful login clears the client's entry.

    clean -> failures 1..N-1 -> locked (Nth failure) -> clean (window elapses)

State lives behind the RateLimitStore interface. InMemoryRateLimitStore is the
default: process-wide, not persisted, cleared on restart. A multi-instance
deployment would need a shared store implementing the same three atomic
operations.

Concurrency: record_failure() is the only write that races (many bad logins
from one address at once). The in-memory store takes a per-key lock around
the read-increment-write so concurrent failures are all counted, and the
overshoot past the threshold is bounded by the number of requests already
inside the credential check when the Nth failure lands.

Memory: entries are bounded by max_entries (oldest last_failure evicted
first) and by sweep(), which the API's maintenance loop calls periodically to
drop entries whose window has elapsed. A login spray from many addresses
therefore cannot grow the map without bound.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from auth.errors import RateLimited
from core.clock import Clock, SystemClock

logger = logging.getLogger("lectoria.auth")


@dataclass(frozen=True)
class RateLimitEntry:
    failures: int
    last_failure: datetime


class RateLimitStore(Protocol):
    def get(self, key: str) -> RateLimitEntry | None: ...

    def record_failure(self, key: str, now: datetime, window_start: datetime | None = None) -> RateLimitEntry: ...

    def clear(self, key: str) -> None: ...

    def sweep(self, older_than: datetime) -> int: ...

    def __len__(self) -> int: ...


class InMemoryRateLimitStore:
    """Bounded, thread-safe in-process RateLimitStore."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._key_locks: dict[str, threading.Lock] = {}
        # Guards _entries and _key_locks structure. Never held while waiting on a key lock.
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get(self, key: str) -> RateLimitEntry | None:
        with self._guard:
            return self._entries.get(key)

    def record_failure(self, key: str, now: datetime, window_start: datetime | None = None) -> RateLimitEntry:
        """Count one failure. A previous failure at or before window_start no longer counts."""
        with self._lock_for(key):
            with self._guard:
                current = self._entries.pop(key, None)
                if current is None or (window_start is not None and current.last_failure <= window_start):
                    failures = 1
                else:
                    failures = current.failures + 1
                entry = RateLimitEntry(failures=failures, last_failure=now)
                # Most recent failure goes to the end; eviction pops from the front.
                self._entries[key] = entry
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    self._key_locks.pop(evicted, None)
            return entry

    def clear(self, key: str) -> None:
        with self._guard:
            self._entries.pop(key, None)

    def sweep(self, older_than: datetime) -> int:
        with self._guard:
            stale = [k for k, e in self._entries.items() if e.last_failure <= older_than]
            for key in stale:
                del self._entries[key]
            # Locks for cleared keys linger until here; drop the idle ones.
            for key in [k for k, lock in self._key_locks.items() if k not in self._entries and not lock.locked()]:
                del self._key_locks[key]
        return len(stale)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class LoginRateLimiter:
    """Threshold + window lockout on top of a RateLimitStore.

    Usage:
        limiter = LoginRateLimiter(InMemoryRateLimitStore())
        limiter.check_allowed(client_ip)      # raises RateLimited when locked
        ... verify credentials ...
        limiter.record_failure(client_ip)     # or record_success(client_ip)
    """

    def __init__(
        self,
        store: RateLimitStore,
        max_attempts: int = 5,
        window: timedelta = timedelta(minutes=15),
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window = window
        self.clock = clock or SystemClock()

    def check_allowed(self, key: str) -> None:
        """Raise RateLimited if key is locked out. Otherwise return silently.

        Read-only: an entry whose window has elapsed is ignored here, restarted
        by the next record_failure() and removed by sweep().
        """
        entry = self.store.get(key)
        if entry is None:
            return
        elapsed = self.clock.now() - entry.last_failure
        if elapsed >= self.window:
            return
        if entry.failures >= self.max_attempts:
            retry_after = (self.window - elapsed).total_seconds()
            raise RateLimited(retry_after=int(retry_after) + 1)

    def record_failure(self, key: str) -> RateLimitEntry:
        now = self.clock.now()
        entry = self.store.record_failure(key, now, window_start=now - self.window)
        if entry.failures == self.max_attempts:
            logger.warning("Login lockout engaged after %d failures", entry.failures)
        return entry

    def record_success(self, key: str) -> None:
        self.store.clear(key)

    def sweep(self) -> int:
        """Drop entries whose lockout window has fully elapsed. Returns the number removed."""
        return self.store.sweep(self.clock.now() - self.window)
