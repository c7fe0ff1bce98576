"""
tests/test_ratelimit.py -- Unit tests for auth/ratelimit.py (login lockout).

Covers:
  - threshold: the Nth failure locks, earlier ones do not
  - lockout applies even to correct credentials (checked before credentials)
  - window: after the lockout window from the last failure, the client is clean
  - check_allowed() is read-only; stale entries are restarted or swept
  - success clears the count
  - Retry-After is positive and shrinks as time passes
  - bounded memory: max_entries eviction and sweep()
  - concurrent failures from one key are all counted
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from auth.errors import RateLimited
from auth.ratelimit import InMemoryRateLimitStore, LoginRateLimiter
from core.clock import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return LoginRateLimiter(InMemoryRateLimitStore(), max_attempts=5, window=timedelta(minutes=15), clock=clock)


def test_four_failures_do_not_lock(limiter):
    for _ in range(4):
        limiter.check_allowed("10.0.0.7")
        limiter.record_failure("10.0.0.7")
    limiter.check_allowed("10.0.0.7")


def test_fifth_failure_locks(limiter):
    for _ in range(5):
        limiter.record_failure("10.0.0.7")
    with pytest.raises(RateLimited) as exc_info:
        limiter.check_allowed("10.0.0.7")
    assert exc_info.value.status_code == 429
    assert 0 < exc_info.value.retry_after <= 15 * 60 + 1
    assert exc_info.value.headers == {"Retry-After": str(exc_info.value.retry_after)}


def test_lockout_is_per_key(limiter):
    for _ in range(5):
        limiter.record_failure("10.0.0.7")
    limiter.check_allowed("10.0.0.8")


def test_retry_after_shrinks(limiter, clock):
    for _ in range(5):
        limiter.record_failure("k")
    with pytest.raises(RateLimited) as first:
        limiter.check_allowed("k")
    clock.advance(minutes=10)
    with pytest.raises(RateLimited) as later:
        limiter.check_allowed("k")
    assert later.value.retry_after < first.value.retry_after


def test_window_elapses_from_last_failure(limiter, clock):
    for _ in range(5):
        limiter.record_failure("k")
    clock.advance(minutes=14, seconds=59)
    with pytest.raises(RateLimited):
        limiter.check_allowed("k")
    clock.advance(seconds=1)
    limiter.check_allowed("k")


def test_check_allowed_leaves_stale_entry_for_sweep(limiter, clock):
    for _ in range(5):
        limiter.record_failure("k")
    clock.advance(minutes=16)
    limiter.check_allowed("k")
    assert limiter.store.get("k").failures == 5
    # A failure landing after the check restarts the count instead of being wiped.
    assert limiter.record_failure("k").failures == 1
    limiter.check_allowed("k")
    assert limiter.store.get("k").failures == 1


def test_sweep_removes_stale_entry_after_check(limiter, clock):
    limiter.record_failure("k")
    clock.advance(minutes=16)
    limiter.check_allowed("k")
    assert limiter.sweep() == 1
    assert limiter.store.get("k") is None


def test_failure_after_window_starts_fresh_count(limiter, clock):
    for _ in range(4):
        limiter.record_failure("k")
    clock.advance(minutes=16)
    limiter.check_allowed("k")
    entry = limiter.record_failure("k")
    assert entry.failures == 1


def test_success_clears_count(limiter):
    for _ in range(4):
        limiter.record_failure("k")
    limiter.record_success("k")
    assert limiter.store.get("k") is None
    limiter.record_failure("k")
    limiter.check_allowed("k")


def test_store_evicts_oldest_when_full(clock):
    store = InMemoryRateLimitStore(max_entries=3)
    for key in ("a", "b", "c"):
        store.record_failure(key, clock.advance(seconds=1))
    store.record_failure("d", clock.advance(seconds=1))
    assert len(store) == 3
    assert store.get("a") is None
    assert store.get("d").failures == 1


def test_repeat_failure_moves_key_to_newest(clock):
    store = InMemoryRateLimitStore(max_entries=2)
    store.record_failure("a", clock.advance(seconds=1))
    store.record_failure("b", clock.advance(seconds=1))
    store.record_failure("a", clock.advance(seconds=1))
    store.record_failure("c", clock.advance(seconds=1))
    assert store.get("a").failures == 2
    assert store.get("b") is None


def test_sweep_drops_entries_past_window(limiter, clock):
    limiter.record_failure("old")
    clock.advance(minutes=10)
    limiter.record_failure("new")
    clock.advance(minutes=6)
    assert limiter.sweep() == 1
    assert limiter.store.get("old") is None
    assert limiter.store.get("new") is not None


def test_concurrent_failures_are_all_counted(clock):
    store = InMemoryRateLimitStore()
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: store.record_failure("k", clock.now()), range(200)))
    assert store.get("k").failures == 200
