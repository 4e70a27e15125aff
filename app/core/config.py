"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    title: str = Field(
        "Vault Guard API",
        description="Title shown in the OpenAPI documentation",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level name")
    format: str = Field(
        "json",
        description="Log line format: 'json' or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file' (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class SanitizerSettings(BaseSettings):
    """Input sanitizer defaults and traversal bounds."""

    max_length: int = Field(
        1000,
        description="Default maximum length of a sanitized string",
        ge=1,
    )
    max_object_depth: int = Field(
        32,
        description="Maximum nesting depth walked by object sanitization",
        ge=1,
    )
    max_object_nodes: int = Field(
        10000,
        description="Maximum number of nodes visited by object sanitization",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="SANITIZER_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiter backend and named policy configuration."""

    enabled: bool = Field(
        True,
        description="Enable request admission control",
    )
    backend: str = Field(
        "memory",
        description="Counter store: 'memory' (single process) or 'redis' (durable, shared)",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL, required when backend is 'redis'",
    )
    redis_prefix: str = Field(
        "ratelimit",
        description="Key namespace for rate limit records in Redis",
    )
    redis_max_retries: int = Field(
        5,
        description="Optimistic transaction attempts before giving up on a key",
        ge=1,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers on responses",
    )
    trust_forwarded_for: bool = Field(
        True,
        description="Use X-Forwarded-For / X-Real-IP to identify the caller address",
    )
    jwt_secret_key: str | None = Field(
        None,
        description="Secret verifying Bearer JWTs for per-user buckets (unset: bucket by address)",
    )
    jwt_algorithm: str = Field(
        "HS256",
        description="Signing algorithm accepted for Bearer JWTs",
    )
    memory_cleanup_interval_seconds: int = Field(
        300,
        description="Sweep interval for the in-memory store",
        ge=1,
    )
    redis_cleanup_interval_seconds: int = Field(
        3600,
        description="Sweep interval for the Redis store",
        ge=1,
    )
    redis_cleanup_batch_size: int = Field(
        100,
        description="Maximum expired records deleted per Redis sweep",
        ge=1,
    )

    general_max: int = Field(100, description="General traffic ceiling", ge=1)
    general_window_ms: int = Field(15 * 60 * 1000, description="General traffic window", ge=1)
    upload_max: int = Field(20, description="Upload ceiling", ge=1)
    upload_window_ms: int = Field(60 * 60 * 1000, description="Upload window", ge=1)
    ai_processing_max: int = Field(50, description="AI processing ceiling", ge=1)
    ai_processing_window_ms: int = Field(60 * 60 * 1000, description="AI processing window", ge=1)
    auth_max: int = Field(5, description="Failed authentication attempts ceiling", ge=1)
    auth_window_ms: int = Field(15 * 60 * 1000, description="Authentication window", ge=1)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


def _build_app_settings() -> AppSettings:
    """Build app settings from environment.

    Pydantic Settings (v2) populates values from environment variables;
    nested groups are created through default factories so env loading
    happens after the .env file above has been applied.
    """

    return AppSettings()


def _build_log_settings() -> LogSettings:
    return LogSettings()


def _build_sanitizer_settings() -> SanitizerSettings:
    return SanitizerSettings()


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    sanitizer: SanitizerSettings = Field(default_factory=_build_sanitizer_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
