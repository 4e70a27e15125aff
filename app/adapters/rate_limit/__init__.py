"""Rate limiting adapters.

This package provides a small abstraction layer so the limiter can count
requests in process memory or in a shared Redis without changing the API
layer.
"""

from app.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
)
from app.adapters.rate_limit.factory import create_rate_limit_store
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore

__all__ = [
    "AbstractRateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitResult",
    "RedisRateLimitStore",
    "create_rate_limit_store",
]
