"""Periodic sweep of expired rate limit entries.

Expired entries are already reset correctly on their next use; the sweep only
bounds memory/storage growth from callers that never come back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.core.config import RateLimitSettings, settings
from app.core.errors import RateLimitBackendError

logger = logging.getLogger(__name__)


class RateLimitCleanupScheduler:
    """Runs ``store.sweep`` on a fixed interval in a background task."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        interval_seconds: float,
        batch_size: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self._store = store
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        store: AbstractRateLimitStore,
        rate_limit_settings: RateLimitSettings | None = None,
    ) -> "RateLimitCleanupScheduler":
        """Pick interval and batch size for the store's backend."""
        cfg = rate_limit_settings or settings.rate_limit
        if store.backend_name == "redis":
            return cls(
                store,
                interval_seconds=cfg.redis_cleanup_interval_seconds,
                batch_size=cfg.redis_cleanup_batch_size,
            )
        return cls(store, interval_seconds=cfg.memory_cleanup_interval_seconds)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Sweep once off the event loop; failures are logged, not raised.

        Returns:
            Number of deleted entries (0 on failure).
        """
        now_ms = int(self._clock() * 1000)
        try:
            deleted = await asyncio.to_thread(self._store.sweep, now_ms, limit=self._batch_size)
        except RateLimitBackendError as exc:
            logger.error(
                "rate_limit.cleanup_failed",
                extra={"backend": self._store.backend_name, "error_code": exc.code},
            )
            return 0

        if deleted:
            logger.info(
                "rate_limit.cleanup_completed",
                extra={"backend": self._store.backend_name, "deleted": deleted},
            )
        return deleted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception as exc:
                # Keep sweeping after unexpected store errors
                logger.exception(
                    "rate_limit.cleanup_failed",
                    extra={"backend": self._store.backend_name, "error_type": type(exc).__name__},
                )

    def start(self) -> None:
        """Start the background loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="rate-limit-cleanup")
        logger.info(
            "rate_limit.cleanup_started",
            extra={"backend": self._store.backend_name, "interval_s": self._interval},
        )

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
