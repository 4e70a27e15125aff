"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceededAppError → 429 with the rate limit body and headers
- Other AppError subclasses → 400 (validation) or 500 (infrastructure)
- Unexpected Exception → generic 500 (safety net)
"""

import logging
from datetime import datetime, timezone

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import AppError, RateLimitBackendError, RateLimitExceededAppError
from app.core.logging import get_request_id
from app.core.rate_limit import format_rate_limit_headers

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceededAppError
) -> JSONResponse:
    """Render a denied admission as HTTP 429.

    The body carries enough for clients to back off correctly:
    ``{success, error, details: {limit, window, resetTime, retryAfter}, timestamp}``.
    Headers mirror the details, plus Retry-After in seconds.
    """
    details = exc.details or {}
    limit = details.get("limit", 0)
    window = details.get("window", 0)
    reset_time = details.get("resetTime", 0)
    retry_after = details.get("retryAfter", 0)

    headers = None
    if settings.rate_limit.include_headers:
        headers = format_rate_limit_headers(
            limit=limit,
            remaining=details.get("remaining", 0),
            reset_time=reset_time,
            window_ms=window,
            retry_after=retry_after,
        )

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": exc.message,
            "details": {
                "limit": limit,
                "window": window,
                "resetTime": reset_time,
                "retryAfter": retry_after,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request (client fault)
    - RateLimitBackendError → 500 (only reachable outside the limiter)

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with ``{"error": {code, message, request_id, details?}}``.
    """
    status_code = 400
    if isinstance(exc, RateLimitBackendError):
        status_code = 500

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the error type for debugging while returning a generic message, so
    no stack traces or internals leak to the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the 429
    handler wins over the generic AppError one.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededAppError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
