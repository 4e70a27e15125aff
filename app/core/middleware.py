"""HTTP middleware for request correlation and rate limit bookkeeping.

The request ID middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Injects request_id into response headers for client-side tracking
- Measures total request duration and includes it in response headers
- Clears context after request completion to prevent context leaks

The rate limit middleware settles per-outcome refunds and adds the
X-RateLimit-* headers once the response status is known.

Usage:
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id
from app.core.rate_limit import RateLimitState, build_rate_limit_headers, get_rate_limiter


async def request_id_middleware(request: Request, call_next) -> Response:
    """HTTP middleware for request ID generation and propagation.

    Uses the client-supplied correlation header (LOG_REQUEST_ID_HEADER,
    default X-Request-ID) or a new UUID, keeps it in contextvars for the
    duration of the request so every log line carries it, and echoes it back
    together with the total handling time.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with X-Request-ID and
            X-Request-Duration-ms headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware settling rate limit decisions after the handler ran.

    Routes gated by ``enforce_rate_limit`` leave their admission decisions on
    ``request.state.rate_limits``. Once the response (or an unhandled error)
    is known, this middleware:

    - Refunds the reserved slot when the policy does not count the outcome
      (success = status < 400; an unhandled exception is a failure).
    - Adds X-RateLimit-* headers from the most restrictive decision, unless
      the handler already set them (e.g. on a 429).

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with rate limit headers added.
    """

    request.state.rate_limits = []
    try:
        response: Response = await call_next(request)
    except Exception:
        await _settle_rate_limits(request, succeeded=False)
        raise

    states = await _settle_rate_limits(request, succeeded=response.status_code < 400)

    if states and settings.rate_limit.include_headers:
        tightest = min(states, key=lambda state: state.result.remaining)
        for name, value in build_rate_limit_headers(tightest.result).items():
            response.headers.setdefault(name, value)
    return response


async def _settle_rate_limits(request: Request, *, succeeded: bool) -> list[RateLimitState]:
    states: list[RateLimitState] = getattr(request.state, "rate_limits", None) or []
    if not states:
        return states

    limiter = get_rate_limiter(request)
    for state in states:
        await run_in_threadpool(
            limiter.record_outcome,
            state.key,
            state.config,
            state.result,
            succeeded=succeeded,
        )
    return states
