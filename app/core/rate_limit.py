"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiter service into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency factory only.
- Swap-friendly: the counter store (memory or Redis) lives behind the
  limiter on ``app.state`` and is chosen at startup.
- Per-route policies: each route names the policy it is gated by.

Key derivation (most specific identity first):
1. ``user:{id}`` from the claims of a verified Bearer JWT (``user_id``, else
   ``sub``). Tokens are checked against ``RATE_LIMIT_JWT_SECRET_KEY``; a
   forged or expired token, or an unset secret, is ignored.
2. ``ip:{addr}`` from X-Forwarded-For / X-Real-IP, else the socket peer.
3. ``ua:{hash}`` of the User-Agent as a last resort.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from jose import JWTError, jwt

from app.adapters.rate_limit.base import RateLimitConfig, RateLimitResult
from app.core.config import settings
from app.core.errors import RateLimitExceededAppError
from app.services.rate_limiter import RateLimiter, get_rate_limit_policy, hash_limiter_key

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Request], str]

RATE_LIMIT_EXCEEDED_MESSAGE = "Too Many Requests - Rate limit exceeded"


@dataclass(frozen=True)
class RateLimitState:
    """Admission decision attached to a request for the outcome middleware."""

    key: str
    config: RateLimitConfig
    result: RateLimitResult


def _bearer_subject(request: Request) -> str | None:
    """Extract the caller id from a Bearer JWT signed with the configured secret."""
    secret = settings.rate_limit.jwt_secret_key
    if not secret:
        return None
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        claims = jwt.decode(
            token.strip(), secret, algorithms=[settings.rate_limit.jwt_algorithm]
        )
    except JWTError:
        logger.debug("rate_limit.bearer_rejected")
        return None
    subject = claims.get("user_id") or claims.get("sub")
    return str(subject) if subject else None


def _client_address(request: Request) -> str | None:
    if settings.rate_limit.trust_forwarded_for:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    if request.client and request.client.host:
        return request.client.host
    return None


def _user_agent_key(request: Request) -> str:
    user_agent = request.headers.get("user-agent", "unknown")
    return f"ua:{hashlib.sha256(user_agent.encode()).hexdigest()[:16]}"


def derive_rate_limit_key(request: Request) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.

    Returns:
        str: Namespaced limiter key (``user:``, ``ip:`` or ``ua:``).
    """
    subject = _bearer_subject(request)
    if subject:
        return f"user:{subject}"

    address = _client_address(request)
    if address:
        return f"ip:{address}"

    return _user_agent_key(request)


def user_based_key(request: Request) -> str:
    """Bucket by authenticated user, falling back to the default derivation."""
    subject = _bearer_subject(request)
    if subject:
        return f"user:{subject}"
    return derive_rate_limit_key(request)


def ip_based_key(request: Request) -> str:
    """Bucket by network address only, ignoring any credential."""
    address = _client_address(request)
    if address:
        return f"ip:{address}"
    return _user_agent_key(request)


def _key_type(key: str) -> str:
    return key.split(":", 1)[0]


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter built at startup by the app factory."""
    return request.app.state.rate_limiter


def format_rate_limit_headers(
    *,
    limit: int,
    remaining: int,
    reset_time: int,
    window_ms: int,
    retry_after: int | None = None,
) -> dict[str, str]:
    """Render the rate limit header set.

    ``X-RateLimit-Reset`` is the epoch millisecond at which the window ends and
    ``X-RateLimit-Window`` the window length in milliseconds.
    """
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_time),
        "X-RateLimit-Window": str(window_ms),
    }
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return headers


def build_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return format_rate_limit_headers(
        limit=result.limit,
        remaining=result.remaining,
        reset_time=result.reset_time,
        window_ms=result.window_ms,
        retry_after=None if result.allowed else result.retry_after_seconds,
    )


def _remember(request: Request, state: RateLimitState) -> None:
    states = getattr(request.state, "rate_limits", None)
    if states is None:
        states = []
        request.state.rate_limits = states
    states.append(state)


def enforce_rate_limit(
    policy: Union[RateLimitConfig, str],
    key_func: KeyFunc | None = None,
) -> Callable[[Request], Awaitable[RateLimitResult | None]]:
    """Build a FastAPI dependency gating a route by a rate limit policy.

    Each call consumes one unit from the caller's budget. The decision is kept
    on ``request.state`` so ``rate_limit_middleware`` can add headers and
    refund the slot when the policy does not count the request's outcome.

    Args:
        policy: RateLimitConfig or the name of a configured policy.
        key_func: Optional custom key derivation; defaults to
            ``derive_rate_limit_key``.

    Returns:
        Dependency returning the RateLimitResult, or None when disabled.

    Raises:
        RateLimitExceededAppError: When the caller exceeded the policy (429).

    Example:
        >>> @router.post("/upload", dependencies=[Depends(enforce_rate_limit("upload"))])
        ... async def upload(): ...
    """

    derive_key = key_func or derive_rate_limit_key

    async def dependency(request: Request) -> RateLimitResult | None:
        if not settings.rate_limit.enabled:
            return None

        config = policy if isinstance(policy, RateLimitConfig) else get_rate_limit_policy(policy)
        limiter = get_rate_limiter(request)
        identity = derive_key(request)
        # Policies keep separate counters for the same caller
        key = f"{config.name}:{identity}"
        key_hash = hash_limiter_key(key)

        result = await run_in_threadpool(limiter.check_rate_limit, key, config)
        _remember(request, RateLimitState(key=key, config=config, result=result))

        if result.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "policy": config.name,
                    "key_type": _key_type(identity),
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_ms": result.window_ms,
                    "degraded": result.degraded,
                },
            )
            return result

        retry_after = result.retry_after_seconds or 0
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "policy": config.name,
                "key_type": _key_type(identity),
                "key_hash": key_hash,
                "limit": result.limit,
                "count": result.count,
                "window_ms": result.window_ms,
                "retry_after_s": retry_after,
            },
        )

        raise RateLimitExceededAppError(
            code="rate_limit_exceeded",
            message=RATE_LIMIT_EXCEEDED_MESSAGE,
            details={
                "limit": result.limit,
                "window": result.window_ms,
                "remaining": result.remaining,
                "resetTime": result.reset_time,
                "retryAfter": retry_after,
            },
        )

    return dependency
