"""Tests for rate limit store selection and settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.adapters.rate_limit.factory import create_rate_limit_store
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.core.app_factory import create_app
from app.core.config import RateLimitSettings, SanitizerSettings
from app.core.errors import ValidationAppError


def test_memory_backend_by_default() -> None:
    store = create_rate_limit_store(RateLimitSettings(backend="memory"))

    assert isinstance(store, InMemoryRateLimitStore)
    assert store.backend_name == "memory"


def test_redis_backend_with_url() -> None:
    store = create_rate_limit_store(
        RateLimitSettings(backend="redis", redis_url="redis://localhost:6379/0", redis_prefix="rl")
    )

    assert isinstance(store, RedisRateLimitStore)
    assert store.backend_name == "redis"


def test_redis_backend_requires_url() -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_rate_limit_store(RateLimitSettings(backend="redis", redis_url=None))

    assert exc_info.value.code == "rate_limit_missing_redis_url"


def test_unknown_backend() -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_rate_limit_store(RateLimitSettings(backend="firestore"))

    assert exc_info.value.code == "rate_limit_unknown_backend"


@pytest.mark.parametrize("field", ["general_max", "upload_window_ms", "redis_max_retries"])
def test_non_positive_values_fail_validation(field: str) -> None:
    with pytest.raises(ValidationError):
        RateLimitSettings(**{field: 0})


def test_sanitizer_max_length_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        SanitizerSettings(max_length=0)


def test_create_app_builds_limiter_from_settings() -> None:
    app = create_app()

    assert isinstance(app.state.rate_limit_store, InMemoryRateLimitStore)
    assert app.state.rate_limiter.store is app.state.rate_limit_store
