"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and the
rate limiter's store and cleanup loop) to improve testability.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.factory import create_rate_limit_store
from app.api.routes import health_router, sanitize_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import rate_limit_middleware, request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.services.cleanup_scheduler import RateLimitCleanupScheduler
from app.services.rate_limiter import RateLimiter


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    scheduler = RateLimitCleanupScheduler.from_settings(app.state.rate_limit_store)
    scheduler.start()
    app.state.cleanup_scheduler = scheduler
    try:
        yield
    finally:
        await scheduler.stop()


def create_app(*, rate_limiter: RateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        rate_limiter: Optional pre-built limiter (tests inject one with a fake
            clock or store); otherwise one is built from settings.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.

    Raises:
        ValidationAppError: If the configured rate limit backend is invalid.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    limiter = rate_limiter or RateLimiter(create_rate_limit_store())

    app = FastAPI(
        title=settings.app.title,
        description=(
            "Sanitize-and-gate API: cleans untrusted strings, JSON documents, "
            "filenames, emails and URLs, reports the threat categories found "
            "(XSS, SQL/NoSQL injection, path traversal, command injection), and "
            "enforces per-caller rate limits backed by memory or Redis."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=_lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )
    app.state.rate_limiter = limiter
    app.state.rate_limit_store = limiter.store

    # Middleware: the last one added runs first, so request ids cover rate limit logs
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(sanitize_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, 429 responses)
    apply_openapi_customizations(app)

    return app
