"""Pydantic schemas for sanitization options and API payloads."""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings


class SanitizationOptions(BaseModel):
    """Recognized options for string sanitization.

    Unknown option names are rejected so typos cannot silently disable a
    protection.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_length: int = Field(
        default_factory=lambda: settings.sanitizer.max_length,
        ge=1,
        description="Maximum length of the sanitized value.",
    )
    allow_html: bool = Field(False, description="Skip HTML entity escaping.")
    allow_special_chars: bool = Field(
        True, description="Keep < > ' \" & instead of removing them."
    )
    trim_whitespace: bool = Field(True, description="Trim leading/trailing whitespace.")
    convert_to_lower_case: bool = Field(False, description="Lower-case the result.")
    remove_null_bytes: bool = Field(True, description="Strip embedded NUL characters.")
    prevent_path_traversal: bool = Field(True, description="Strip ../ sequences.")
    prevent_xss: bool = Field(True, description="Strip script-injection payloads.")
    prevent_sql_injection: bool = Field(True, description="Strip SQL injection payloads.")
    prevent_command_injection: bool = Field(
        True, description="Strip shell metacharacters and command names."
    )


class SanitizeStringRequest(BaseModel):
    """Request body for string sanitization.

    ``value`` is typed loosely so a non-string reaches the sanitizer and is
    reported as ``invalid_input_type`` rather than a schema error.
    """

    value: Any = Field(..., description="Untrusted text to sanitize.")
    options: SanitizationOptions | None = Field(
        default=None, description="Overrides for the default options."
    )


class SanitizeStringResponse(BaseModel):
    sanitized: str
    is_modified: bool
    detected_threats: List[str] = Field(default_factory=list)
    original_length: int
    sanitized_length: int


class SanitizeObjectRequest(BaseModel):
    value: Any = Field(..., description="Untrusted nested structure (e.g. a JSON body).")
    options: SanitizationOptions | None = None


class FieldThreats(BaseModel):
    field: str = Field(..., description="Dotted/bracketed path from the root, e.g. user.emails[2].")
    threats: List[str]


class SanitizeObjectResponse(BaseModel):
    sanitized: Any
    threats: List[FieldThreats] = Field(default_factory=list)


class ValueRequest(BaseModel):
    value: str = Field(..., description="Untrusted value to validate or clean.")


class ValidationResponse(BaseModel):
    is_valid: bool
    sanitized: str


class FilenameResponse(BaseModel):
    sanitized: str
