"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep a consistent but flexible shape across
    the codebase. Rate limit fields use the camelCase names of the 429
    response body.
    """

    code: str
    message: str
    hint: str
    actual_type: str
    backend: str
    operation: str
    limit: int
    window: int
    remaining: int
    resetTime: int
    retryAfter: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidInputTypeError(ValidationAppError):
    """Raised when string sanitization receives a non-textual value."""


class RateLimitExceededAppError(AppError):
    """Raised when a caller has exhausted its quota for the current window."""


class RateLimitBackendError(AppError):
    """Raised by rate limit stores when the backing infrastructure fails.

    The limiter catches this and fails open; it never reaches a client.
    """
