"""Request admission service on top of a rate limit store.

The limiter turns store counters into allow/deny decisions for a policy,
refunds requests whose outcome the policy exempts, and fails open when the
store is unavailable: quota tracking being degraded must not take the
protected API down with it.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitConfig, RateLimitResult
from app.core.config import RateLimitSettings, settings
from app.core.errors import RateLimitBackendError

logger = logging.getLogger(__name__)

GENERAL = "general"
UPLOAD = "upload"
AI_PROCESSING = "ai_processing"
AUTH = "auth"


def build_rate_limit_policies(
    rate_limit_settings: RateLimitSettings | None = None,
) -> dict[str, RateLimitConfig]:
    """Build the named admission policies from configuration.

    - general: every request counts.
    - upload / ai_processing: failed attempts are not held against the caller.
    - auth: only failed attempts count, a brute-force brake rather than a throttle.
    """
    cfg = rate_limit_settings or settings.rate_limit
    return {
        GENERAL: RateLimitConfig(
            window_ms=cfg.general_window_ms,
            max=cfg.general_max,
            name=GENERAL,
        ),
        UPLOAD: RateLimitConfig(
            window_ms=cfg.upload_window_ms,
            max=cfg.upload_max,
            skip_failed_requests=True,
            name=UPLOAD,
        ),
        AI_PROCESSING: RateLimitConfig(
            window_ms=cfg.ai_processing_window_ms,
            max=cfg.ai_processing_max,
            skip_failed_requests=True,
            name=AI_PROCESSING,
        ),
        AUTH: RateLimitConfig(
            window_ms=cfg.auth_window_ms,
            max=cfg.auth_max,
            skip_successful_requests=True,
            name=AUTH,
        ),
    }


def get_rate_limit_policy(name: str) -> RateLimitConfig:
    """Resolve a named policy from current settings.

    Raises:
        KeyError: If no policy has that name.
    """
    return build_rate_limit_policies()[name]


def hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing identities."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimiter:
    """Fixed-window admission control over an injected store."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Counter store shared by every check of this process.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> AbstractRateLimitStore:
        return self._store

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check_rate_limit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Count a request for key and decide whether it is admitted.

        The check and the increment happen atomically in the store, so
        concurrent requests on one key can never both take the last slot.

        Args:
            key: Derived caller key (see ``derive_rate_limit_key``).
            config: Policy to enforce.

        Returns:
            RateLimitResult; when the store fails, an allowed result flagged
            as degraded.
        """
        now_ms = self.now_ms()
        try:
            entry = self._store.increment(key, window_ms=config.window_ms, now_ms=now_ms)
        except RateLimitBackendError as exc:
            logger.error(
                "rate_limit.backend_unavailable",
                extra={
                    "policy": config.name,
                    "key_hash": hash_limiter_key(key),
                    "backend": self._store.backend_name,
                    "error_code": exc.code,
                    "degraded": True,
                    "fail_open": True,
                },
            )
            return RateLimitResult(
                allowed=True,
                count=0,
                reset_time=now_ms + config.window_ms,
                remaining=config.max,
                limit=config.max,
                window_ms=config.window_ms,
                degraded=True,
            )

        allowed = entry.count <= config.max
        retry_after = None
        if not allowed:
            retry_after = max(0, math.ceil((entry.reset_time - now_ms) / 1000))

        return RateLimitResult(
            allowed=allowed,
            count=entry.count,
            reset_time=entry.reset_time,
            remaining=max(0, config.max - entry.count),
            limit=config.max,
            window_ms=config.window_ms,
            retry_after_seconds=retry_after,
        )

    def record_outcome(
        self,
        key: str,
        config: RateLimitConfig,
        result: RateLimitResult,
        *,
        succeeded: bool,
    ) -> bool:
        """Refund an admitted request whose outcome the policy does not count.

        Args:
            key: Key the request was counted under.
            config: Policy used for the admission check.
            result: Result of that admission check.
            succeeded: Whether the downstream handler succeeded.

        Returns:
            True if a slot was given back.
        """
        if config.counts_outcome(succeeded=succeeded):
            return False
        if not result.allowed or result.degraded:
            return False

        try:
            refunded = self._store.decrement(key, reset_time=result.reset_time)
        except RateLimitBackendError as exc:
            logger.warning(
                "rate_limit.refund_failed",
                extra={
                    "policy": config.name,
                    "key_hash": hash_limiter_key(key),
                    "backend": self._store.backend_name,
                    "error_code": exc.code,
                },
            )
            return False

        if refunded is not None:
            logger.debug(
                "rate_limit.refunded",
                extra={
                    "policy": config.name,
                    "key_hash": hash_limiter_key(key),
                    "succeeded": succeeded,
                    "count": refunded.count,
                },
            )
        return refunded is not None

    def reset(self, key: str) -> bool:
        """Forget all counted requests for key."""
        return self._store.delete(key)

    def sweep(self, *, limit: int | None = None) -> int:
        """Delete expired entries from the store."""
        return self._store.sweep(self.now_ms(), limit=limit)
