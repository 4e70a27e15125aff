"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- Bearer JWT security scheme (used to pick the per-user rate limit bucket)
- A documented 429 response and rate limit headers on every /v1 operation

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Requests allowed per window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "Epoch milliseconds at which the window resets.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Window": {
        "description": "Window length in milliseconds.",
        "schema": {"type": "integer"},
    },
}

_TOO_MANY_REQUESTS: Dict[str, Any] = {
    "description": "Rate limit exceeded.",
    "headers": {
        **_RATE_LIMIT_HEADERS,
        "Retry-After": {
            "description": "Seconds until the window resets.",
            "schema": {"type": "integer"},
        },
    },
    "content": {
        "application/json": {
            "example": {
                "success": False,
                "error": "Too Many Requests - Rate limit exceeded",
                "details": {
                    "limit": 100,
                    "window": 900000,
                    "resetTime": 1700000900000,
                    "retryAfter": 412,
                },
                "timestamp": "2024-01-01T00:00:00+00:00",
            }
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags, security and 429 docs.

    - Injects components.securitySchemes for an optional Bearer JWT
    - Documents the 429 response and X-RateLimit-* headers on /v1 operations
    - Exempts health endpoints from security by setting ``security: []``
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "BearerAuth",
            {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": (
                    "Optional. When present, the token's user_id/sub claim selects "
                    "the caller's rate limit bucket."
                ),
            },
        )

        # Bearer is optional: anonymous callers are bucketed by address
        schema.setdefault("security", [{"BearerAuth": []}, {}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Sanitization",
                "description": "Sanitize and validate untrusted input.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                elif path.startswith("/v1/"):
                    responses = method_obj.setdefault("responses", {})
                    responses.setdefault("429", _TOO_MANY_REQUESTS)
                    ok = responses.get("200")
                    if isinstance(ok, dict):
                        ok.setdefault("headers", dict(_RATE_LIMIT_HEADERS))

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
