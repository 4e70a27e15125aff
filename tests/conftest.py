"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment before ``app.core.config`` builds the global
settings, so local .env files cannot change test behaviour.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_INCLUDE_HEADERS", "true")
os.environ.setdefault("RATE_LIMIT_JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore  # noqa: E402
from app.core.app_factory import create_app  # noqa: E402
from app.services.rate_limiter import RateLimiter  # noqa: E402


@pytest.fixture
def clock() -> Mock:
    """Fake UNIX clock (seconds); tests move time by setting return_value."""
    return Mock(return_value=1_700_000_000.0)


@pytest.fixture
def memory_store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def limiter(memory_store: InMemoryRateLimitStore, clock: Mock) -> RateLimiter:
    return RateLimiter(memory_store, clock=clock)


@pytest.fixture
def app(limiter: RateLimiter) -> FastAPI:
    """Fresh application with an isolated in-memory limiter and fake clock."""
    return create_app(rate_limiter=limiter)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
