"""Rate limiter data types and store interface.

The limiter depends on this abstraction (not a concrete backend) so the
in-memory store and the durable Redis store are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable admission policy.

    Attributes:
        window_ms: Length of the fixed window in milliseconds.
        max: Ceiling of counted requests per window.
        skip_successful_requests: Do not count requests whose handler succeeded.
        skip_failed_requests: Do not count requests whose handler failed.
        name: Policy name used in logs.
    """

    window_ms: int
    max: int
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    name: str = "custom"

    def __post_init__(self) -> None:
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if self.max < 1:
            raise ValueError("max must be >= 1")

    def counts_outcome(self, *, succeeded: bool) -> bool:
        """Whether a request with the given outcome counts toward the ceiling."""
        if succeeded:
            return not self.skip_successful_requests
        return not self.skip_failed_requests


@dataclass(frozen=True)
class RateLimitEntry:
    """Counter state for one key and one window.

    Times are UNIX epoch milliseconds. The entry is logically expired once
    ``now >= reset_time`` and must then be replaced, never incremented.
    """

    count: int
    reset_time: int
    first_request: int
    last_request: int

    @property
    def window_start(self) -> int:
        return self.first_request

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.reset_time


@dataclass(frozen=True)
class RateLimitResult:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        count: Counted requests in the current window, this one included.
        reset_time: UNIX epoch milliseconds when the current window resets.
        remaining: Remaining allowance in the window (0 when blocked).
        limit: Ceiling of the policy that produced this result.
        window_ms: Window size of that policy.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        degraded: True when the backend failed and the request was let through.
    """

    allowed: bool
    count: int
    reset_time: int
    remaining: int
    limit: int
    window_ms: int
    retry_after_seconds: int | None = None
    degraded: bool = False


class AbstractRateLimitStore(ABC):
    """Interface for rate limit counter stores.

    Stores exclusively own their entries; callers only ever pass keys.
    Infrastructure failures are raised as ``RateLimitBackendError``.
    """

    backend_name: str = "abstract"

    @abstractmethod
    def get(self, key: str) -> RateLimitEntry | None:
        """Return the stored entry for ``key``, expired or not."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, entry: RateLimitEntry) -> None:
        """Replace the entry for ``key``."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the entry for ``key``; returns True if one existed."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, *, window_ms: int, now_ms: int) -> RateLimitEntry:
        """Atomically count one request for ``key``.

        Creates the entry on first use and replaces it with a fresh window
        when expired. Concurrent calls for the same key never observe the
        same count.

        Args:
            key: Rate limit key.
            window_ms: Window length used when a new window starts.
            now_ms: Current time in epoch milliseconds.

        Returns:
            The entry after the increment.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: str, *, reset_time: int) -> RateLimitEntry | None:
        """Atomically give back one counted request.

        Only applies when the stored window still ends at ``reset_time``;
        a refund never leaks into a later window and never goes below zero.

        Returns:
            The updated entry, or None when nothing was refunded.
        """
        raise NotImplementedError

    @abstractmethod
    def sweep(self, now_ms: int, *, limit: int | None = None) -> int:
        """Delete entries whose window has ended.

        Args:
            now_ms: Current time in epoch milliseconds.
            limit: Maximum number of entries to delete (None for all).

        Returns:
            Number of deleted entries.
        """
        raise NotImplementedError
