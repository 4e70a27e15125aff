"""Unit tests for the in-memory rate limit store."""

import threading

import pytest

from app.adapters.rate_limit.base import RateLimitConfig, RateLimitEntry
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore


def test_first_request_creates_fresh_window() -> None:
    store = InMemoryRateLimitStore()

    entry = store.increment("k", window_ms=1000, now_ms=5000)

    assert entry == RateLimitEntry(count=1, reset_time=6000, first_request=5000, last_request=5000)
    assert entry.window_start == 5000
    assert store.get("k") == entry


def test_counts_within_same_window() -> None:
    store = InMemoryRateLimitStore()

    store.increment("k", window_ms=1000, now_ms=5000)
    store.increment("k", window_ms=1000, now_ms=5100)
    entry = store.increment("k", window_ms=1000, now_ms=5999)

    assert entry.count == 3
    assert entry.reset_time == 6000
    assert entry.last_request == 5999


def test_expired_entry_is_replaced_not_incremented() -> None:
    store = InMemoryRateLimitStore()
    store.increment("k", window_ms=1000, now_ms=5000)
    store.increment("k", window_ms=1000, now_ms=5500)

    entry = store.increment("k", window_ms=1000, now_ms=6000)

    assert entry.count == 1
    assert entry.reset_time == 7000
    assert entry.first_request == 6000


def test_isolated_by_key() -> None:
    store = InMemoryRateLimitStore()

    store.increment("k1", window_ms=1000, now_ms=0)
    store.increment("k1", window_ms=1000, now_ms=0)

    assert store.increment("k2", window_ms=1000, now_ms=0).count == 1


def test_decrement_only_within_same_window() -> None:
    store = InMemoryRateLimitStore()
    first = store.increment("k", window_ms=1000, now_ms=0)
    store.increment("k", window_ms=1000, now_ms=10)

    refunded = store.decrement("k", reset_time=first.reset_time)
    assert refunded is not None
    assert refunded.count == 1

    # A refund for an older window never touches the current one
    store.increment("k", window_ms=1000, now_ms=2000)
    assert store.decrement("k", reset_time=first.reset_time) is None
    assert store.get("k").count == 1


def test_decrement_never_goes_below_zero() -> None:
    store = InMemoryRateLimitStore()
    entry = store.increment("k", window_ms=1000, now_ms=0)

    assert store.decrement("k", reset_time=entry.reset_time).count == 0
    assert store.decrement("k", reset_time=entry.reset_time) is None
    assert store.decrement("missing", reset_time=entry.reset_time) is None


def test_set_get_delete() -> None:
    store = InMemoryRateLimitStore()
    entry = RateLimitEntry(count=4, reset_time=100, first_request=0, last_request=50)

    store.set("k", entry)
    assert store.get("k") == entry
    assert len(store) == 1

    assert store.delete("k") is True
    assert store.delete("k") is False
    assert store.get("k") is None


def test_sweep_removes_only_expired_entries() -> None:
    store = InMemoryRateLimitStore(sweep_batch_size=2)
    for i in range(5):
        store.increment(f"old-{i}", window_ms=1000, now_ms=0)
    store.increment("fresh", window_ms=1000, now_ms=900)

    deleted = store.sweep(1000)

    assert deleted == 5
    assert len(store) == 1
    assert store.get("fresh") is not None


def test_sweep_respects_limit() -> None:
    store = InMemoryRateLimitStore()
    for i in range(5):
        store.increment(f"k{i}", window_ms=10, now_ms=0)

    assert store.sweep(100, limit=3) == 3
    assert len(store) == 2
    assert store.sweep(100) == 2


def test_concurrent_increments_never_share_a_count() -> None:
    store = InMemoryRateLimitStore()
    counts: list[int] = []
    lock = threading.Lock()
    barrier = threading.Barrier(20)

    def worker() -> None:
        barrier.wait()
        entry = store.increment("shared", window_ms=60_000, now_ms=0)
        with lock:
            counts.append(entry.count)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(counts) == list(range(1, 21))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"window_ms": 0, "max": 1},
        {"window_ms": 1000, "max": 0},
    ],
)
def test_invalid_config_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        RateLimitConfig(**kwargs)


def test_invalid_store_args() -> None:
    with pytest.raises(ValueError):
        InMemoryRateLimitStore(sweep_batch_size=0)

    with pytest.raises(ValueError):
        InMemoryRateLimitStore().increment("", window_ms=1000, now_ms=0)


def test_counts_outcome_per_policy_flags() -> None:
    counts_all = RateLimitConfig(window_ms=1000, max=1)
    skip_failed = RateLimitConfig(window_ms=1000, max=1, skip_failed_requests=True)
    skip_successful = RateLimitConfig(window_ms=1000, max=1, skip_successful_requests=True)

    assert counts_all.counts_outcome(succeeded=True) is True
    assert counts_all.counts_outcome(succeeded=False) is True
    assert skip_failed.counts_outcome(succeeded=False) is False
    assert skip_failed.counts_outcome(succeeded=True) is True
    assert skip_successful.counts_outcome(succeeded=True) is False
    assert skip_successful.counts_outcome(succeeded=False) is True
