"""Factory pattern for creating rate limit store instances."""

from __future__ import annotations

from redis import Redis

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.core.config import RateLimitSettings, settings
from app.core.errors import ValidationAppError


def create_redis_client(redis_url: str) -> Redis:
    """Build a Redis client; the connection is opened lazily on first command."""
    return Redis.from_url(redis_url, decode_responses=True)


def create_rate_limit_store(
    rate_limit_settings: RateLimitSettings | None = None,
) -> AbstractRateLimitStore:
    """Instantiate the counter store selected by configuration.

    Args:
        rate_limit_settings: Optional settings; defaults to the global settings.

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or misconfigured.
    """
    cfg = rate_limit_settings or settings.rate_limit
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryRateLimitStore()

    if backend == "redis":
        if not cfg.redis_url:
            raise ValidationAppError(
                code="rate_limit_missing_redis_url",
                message="Redis rate limit backend requires RATE_LIMIT_REDIS_URL",
            )
        return RedisRateLimitStore(
            create_redis_client(cfg.redis_url),
            prefix=cfg.redis_prefix,
            max_retries=cfg.redis_max_retries,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: memory, redis"
        ),
    )
