"""In-memory fixed-window rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading
from dataclasses import replace

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitEntry


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Volatile counter store keyed by rate limit key.

    Windows start at the first request of a key (not on clock-aligned
    boundaries) and last ``window_ms``.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Use the Redis store for shared limits.
    """

    backend_name = "memory"

    def __init__(self, *, sweep_batch_size: int = 500) -> None:
        """Initialize the store.

        Args:
            sweep_batch_size: Entries deleted per lock acquisition during a sweep.

        Raises:
            ValueError: If sweep_batch_size is invalid.
        """
        if sweep_batch_size < 1:
            raise ValueError("sweep_batch_size must be >= 1")

        self._sweep_batch_size = sweep_batch_size
        self._lock = threading.RLock()
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> RateLimitEntry | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: RateLimitEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def increment(self, key: str, *, window_ms: int, now_ms: int) -> RateLimitEntry:
        """Count one request for key, starting a new window when needed."""
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now_ms):
                entry = RateLimitEntry(
                    count=1,
                    reset_time=now_ms + window_ms,
                    first_request=now_ms,
                    last_request=now_ms,
                )
            else:
                entry = replace(entry, count=entry.count + 1, last_request=now_ms)
            self._entries[key] = entry
            return entry

    def decrement(self, key: str, *, reset_time: int) -> RateLimitEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.reset_time != reset_time or entry.count < 1:
                return None
            entry = replace(entry, count=entry.count - 1)
            self._entries[key] = entry
            return entry

    def sweep(self, now_ms: int, *, limit: int | None = None) -> int:
        """Delete expired entries in batches, releasing the lock in between."""
        with self._lock:
            expired_keys = [k for k, entry in self._entries.items() if entry.is_expired(now_ms)]
        if limit is not None:
            expired_keys = expired_keys[:limit]

        deleted = 0
        for start in range(0, len(expired_keys), self._sweep_batch_size):
            batch = expired_keys[start : start + self._sweep_batch_size]
            with self._lock:
                for key in batch:
                    entry = self._entries.get(key)
                    # Re-check: the key may have started a new window meanwhile.
                    if entry is not None and entry.is_expired(now_ms):
                        del self._entries[key]
                        deleted += 1
        return deleted
