"""Sanitize-and-gate endpoints.

Every route is rate limited by a named policy and returns the cleaned value
together with the threat labels found. Raw and sanitized values never reach
the logs; only field paths and labels do.
"""

from __future__ import annotations

import logging
from typing import Iterable

from fastapi import APIRouter, Depends

from app.core.rate_limit import enforce_rate_limit
from app.schemas.sanitization import (
    FieldThreats,
    FilenameResponse,
    SanitizeObjectRequest,
    SanitizeObjectResponse,
    SanitizeStringRequest,
    SanitizeStringResponse,
    ValidationResponse,
    ValueRequest,
)
from app.services.input_sanitizer import ThreatReport, default_sanitizer
from app.services.rate_limiter import GENERAL, UPLOAD

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sanitization"])


def _log_threats(endpoint: str, reports: Iterable[ThreatReport]) -> None:
    findings = [{"field": report.field or "$", "threats": report.threats} for report in reports]
    if findings:
        logger.warning(
            "sanitizer.threats_detected",
            extra={"endpoint": endpoint, "findings": findings},
        )


@router.post(
    "/sanitize/string",
    response_model=SanitizeStringResponse,
    dependencies=[Depends(enforce_rate_limit(GENERAL))],
)
async def sanitize_string(body: SanitizeStringRequest) -> SanitizeStringResponse:
    """Sanitize a single untrusted string.

    Raises:
        InvalidInputTypeError: 400 ``invalid_input_type`` when ``value`` is not a string.
    """
    result = default_sanitizer.sanitize_string(body.value, body.options)
    if result.detected_threats:
        _log_threats("sanitize.string", [ThreatReport(field="", threats=result.detected_threats)])
    return SanitizeStringResponse(
        sanitized=result.sanitized,
        is_modified=result.is_modified,
        detected_threats=result.detected_threats,
        original_length=result.original_length,
        sanitized_length=result.sanitized_length,
    )


@router.post(
    "/sanitize/object",
    response_model=SanitizeObjectResponse,
    dependencies=[Depends(enforce_rate_limit(GENERAL))],
)
async def sanitize_object(body: SanitizeObjectRequest) -> SanitizeObjectResponse:
    """Sanitize every string leaf of a JSON document."""
    result = default_sanitizer.sanitize_object(body.value, body.options)
    _log_threats("sanitize.object", result.threats)
    return SanitizeObjectResponse(
        sanitized=result.sanitized,
        threats=[FieldThreats(field=report.field, threats=report.threats) for report in result.threats],
    )


@router.post(
    "/sanitize/filename",
    response_model=FilenameResponse,
    dependencies=[Depends(enforce_rate_limit(UPLOAD))],
)
async def sanitize_filename(body: ValueRequest) -> FilenameResponse:
    return FilenameResponse(sanitized=default_sanitizer.sanitize_filename(body.value))


@router.post(
    "/validate/email",
    response_model=ValidationResponse,
    dependencies=[Depends(enforce_rate_limit(GENERAL))],
)
async def validate_email(body: ValueRequest) -> ValidationResponse:
    result = default_sanitizer.validate_email(body.value)
    return ValidationResponse(is_valid=result.is_valid, sanitized=result.sanitized)


@router.post(
    "/validate/url",
    response_model=ValidationResponse,
    dependencies=[Depends(enforce_rate_limit(GENERAL))],
)
async def validate_url(body: ValueRequest) -> ValidationResponse:
    """Accept only absolute http(s) URLs after sanitization."""
    result = default_sanitizer.validate_url(body.value)
    return ValidationResponse(is_valid=result.is_valid, sanitized=result.sanitized)
