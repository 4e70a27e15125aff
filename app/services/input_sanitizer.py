"""Input sanitization for untrusted request data.

This service makes strings and nested request bodies safe to log, store and
interpolate downstream. It never rejects input: payloads are neutralized and
the detected threat categories are reported, leaving it to handlers to decide
whether to log, flag or block.

Stripping is used for injection classes (fragments stay dangerous if they are
concatenated later); escaping is reserved for HTML, where the escaped form is
still usable text.

Processing order for a string:
1. null bytes  2. trim  3. truncate  4. XSS  5. SQL  6. NoSQL
7. path traversal  8. command injection  9. HTML escape
10. special characters  11. lower-case
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Mapping, Sequence
from urllib.parse import urlsplit

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import InvalidInputTypeError, ValidationAppError
from app.schemas.sanitization import SanitizationOptions
from app.utils.threat_patterns import (
    DEFAULT_THREAT_RULES,
    EMAIL_PATTERN,
    FILENAME_UNSAFE_CHARS,
    HTML_ESCAPES,
    PARTIAL_ENTITY_TAIL,
    SPECIAL_CHARS_PATTERN,
    ThreatRule,
)

NULL_BYTES = "null_bytes"
EXCESSIVE_LENGTH = "excessive_length"
HTML_CONTENT = "html_content"
SPECIAL_CHARACTERS = "special_characters"
EXCESSIVE_DEPTH = "excessive_depth"
EXCESSIVE_SIZE = "excessive_size"
CIRCULAR_REFERENCE = "circular_reference"

EMAIL_OPTIONS = SanitizationOptions(
    max_length=254,
    allow_special_chars=True,
    convert_to_lower_case=True,
    prevent_xss=True,
)

# URLs keep their slashes: escaping would turn every URL into an unparseable one.
URL_OPTIONS = SanitizationOptions(
    max_length=2048,
    allow_html=True,
    allow_special_chars=True,
    prevent_xss=True,
    prevent_command_injection=True,
)

FILENAME_OPTIONS = SanitizationOptions(
    max_length=255,
    allow_html=False,
    allow_special_chars=False,
    prevent_path_traversal=True,
    prevent_command_injection=True,
)

_WHITESPACE_RUN = re.compile(r"\s+")
_UNDERSCORE_RUN = re.compile(r"_{2,}")

OptionsInput = SanitizationOptions | Mapping[str, Any] | None


@dataclass(frozen=True)
class SanitizationResult:
    """Outcome of sanitizing one string.

    Attributes:
        sanitized: Cleaned value, never longer than the configured max length.
        is_modified: True iff ``sanitized`` differs from the input.
        detected_threats: Distinct threat labels in stage order.
        original_length: Length of the input.
        sanitized_length: Length of ``sanitized``.
    """

    sanitized: str
    is_modified: bool
    detected_threats: list[str]
    original_length: int
    sanitized_length: int


@dataclass(frozen=True)
class ThreatReport:
    """Threats found in a single field of a nested structure."""

    field: str
    threats: list[str]


@dataclass(frozen=True)
class ObjectSanitizationResult:
    sanitized: Any
    threats: list[ThreatReport] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    sanitized: str


def escape_html(text: str) -> str:
    for raw, entity in HTML_ESCAPES:
        text = text.replace(raw, entity)
    return text


def _clamp(text: str, max_length: int, *, escaped: bool) -> str:
    """Cut text to max_length without leaving half an HTML entity behind."""
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    if escaped:
        cut = PARTIAL_ENTITY_TAIL.sub("", cut)
    return cut


class InputSanitizer:
    """Stateless scrubber for untrusted strings and nested structures."""

    def __init__(
        self,
        rules: Sequence[ThreatRule] = DEFAULT_THREAT_RULES,
        *,
        default_options: SanitizationOptions | None = None,
        max_object_depth: int | None = None,
        max_object_nodes: int | None = None,
    ) -> None:
        """Initialize the sanitizer.

        Args:
            rules: Ordered injection rules applied between truncation and
                HTML escaping.
            default_options: Options used when a call passes none.
            max_object_depth: Container nesting bound for object sanitization.
            max_object_nodes: Visited-node bound for object sanitization.
        """
        self._rules = tuple(rules)
        self._default_options = default_options or SanitizationOptions()
        self._max_object_depth = max_object_depth or settings.sanitizer.max_object_depth
        self._max_object_nodes = max_object_nodes or settings.sanitizer.max_object_nodes

    @property
    def rules(self) -> tuple[ThreatRule, ...]:
        return self._rules

    def _resolve_options(self, options: OptionsInput) -> SanitizationOptions:
        if options is None:
            return self._default_options
        if isinstance(options, SanitizationOptions):
            return options
        try:
            return SanitizationOptions.model_validate(
                {**self._default_options.model_dump(), **dict(options)}
            )
        except ValidationError as exc:
            raise ValidationAppError(
                code="invalid_sanitization_options",
                message="Unrecognized or invalid sanitization options",
                details={
                    "context": {
                        "fields": [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
                    }
                },
            ) from exc

    def sanitize_string(self, value: Any, options: OptionsInput = None) -> SanitizationResult:
        """Clean a single untrusted string.

        Args:
            value: Text to sanitize.
            options: SanitizationOptions, a mapping of overrides, or None.

        Returns:
            SanitizationResult with the cleaned text and detected threats.

        Raises:
            InvalidInputTypeError: If value is not a string.
            ValidationAppError: If options contain unknown or invalid entries.
        """
        if not isinstance(value, str):
            raise InvalidInputTypeError(
                code="invalid_input_type",
                message="Input must be a string",
                details={"actual_type": type(value).__name__},
            )

        opts = self._resolve_options(options)
        text = value
        threats: list[str] = []

        def flag(label: str) -> None:
            if label not in threats:
                threats.append(label)

        if opts.remove_null_bytes and "\0" in text:
            text = text.replace("\0", "")
            flag(NULL_BYTES)

        if opts.trim_whitespace:
            text = text.strip()

        if len(text) > opts.max_length:
            text = text[: opts.max_length]
            flag(EXCESSIVE_LENGTH)

        for rule in self._rules:
            if rule.option is not None and not getattr(opts, rule.option):
                continue
            text, detected = rule.scrub(text)
            if detected:
                flag(rule.label)

        escaped = False
        if not opts.allow_html:
            html_escaped = escape_html(text)
            if html_escaped != text:
                text = html_escaped
                escaped = True
                flag(HTML_CONTENT)

        if not opts.allow_special_chars:
            stripped, count = SPECIAL_CHARS_PATTERN.subn("", text)
            if count:
                text = stripped
                flag(SPECIAL_CHARACTERS)

        if opts.convert_to_lower_case:
            text = text.lower()

        if len(text) > opts.max_length:
            text = _clamp(text, opts.max_length, escaped=escaped and opts.allow_special_chars)
            flag(EXCESSIVE_LENGTH)

        return SanitizationResult(
            sanitized=text,
            is_modified=text != value,
            detected_threats=threats,
            original_length=len(value),
            sanitized_length=len(text),
        )

    def sanitize_object(self, value: Any, options: OptionsInput = None) -> ObjectSanitizationResult:
        """Recursively sanitize every string leaf of a nested structure.

        Mappings and lists/tuples are walked in pre-order; numbers, booleans
        and None pass through unchanged. Mapping keys are kept as they are.
        Subtrees beyond the depth or size bound, and containers that contain
        themselves, are replaced with None and reported.

        Args:
            value: String, mapping, sequence or scalar.
            options: Options applied to every string leaf.

        Returns:
            ObjectSanitizationResult with the cleaned structure and one
            ThreatReport per field that had threats.
        """
        opts = self._resolve_options(options)
        threats: list[ThreatReport] = []
        active: set[int] = set()
        visited = 0
        size_exceeded = False

        def walk(node: Any, path: str, depth: int) -> Any:
            nonlocal visited, size_exceeded
            if size_exceeded:
                return None
            visited += 1
            if visited > self._max_object_nodes:
                size_exceeded = True
                threats.append(ThreatReport(field=path, threats=[EXCESSIVE_SIZE]))
                return None

            if isinstance(node, str):
                result = self.sanitize_string(node, opts)
                if result.detected_threats:
                    threats.append(ThreatReport(field=path, threats=result.detected_threats))
                return result.sanitized

            if not isinstance(node, (Mapping, list, tuple)):
                return node

            if depth >= self._max_object_depth:
                threats.append(ThreatReport(field=path, threats=[EXCESSIVE_DEPTH]))
                return None
            if id(node) in active:
                threats.append(ThreatReport(field=path, threats=[CIRCULAR_REFERENCE]))
                return None

            active.add(id(node))
            try:
                if isinstance(node, Mapping):
                    return {
                        key: walk(item, f"{path}.{key}" if path else str(key), depth + 1)
                        for key, item in node.items()
                    }
                items = [walk(item, f"{path}[{index}]", depth + 1) for index, item in enumerate(node)]
                return tuple(items) if isinstance(node, tuple) else items
            finally:
                active.discard(id(node))

        return ObjectSanitizationResult(sanitized=walk(value, "", 0), threats=threats)

    def validate_email(self, value: str) -> ValidationResult:
        """Sanitize and case-fold an email address, then check its shape."""
        sanitized = self.sanitize_string(value, EMAIL_OPTIONS).sanitized
        return ValidationResult(
            is_valid=EMAIL_PATTERN.fullmatch(sanitized) is not None,
            sanitized=sanitized,
        )

    def validate_url(self, value: str) -> ValidationResult:
        """Sanitize a URL and accept only absolute http(s) URLs."""
        sanitized = self.sanitize_string(value, URL_OPTIONS).sanitized
        try:
            parts = urlsplit(sanitized)
            _ = parts.port  # raises ValueError on a malformed port
        except ValueError:
            return ValidationResult(is_valid=False, sanitized=sanitized)

        is_valid = parts.scheme in ("http", "https") and bool(parts.hostname)
        return ValidationResult(is_valid=is_valid, sanitized=sanitized)

    def sanitize_filename(self, value: str) -> str:
        """Produce a storage-safe filename.

        The result has no path separators or reserved filename characters,
        no whitespace, and no leading/trailing underscores. It may be empty
        when nothing safe is left.
        """
        name = self.sanitize_string(value, FILENAME_OPTIONS).sanitized
        name = FILENAME_UNSAFE_CHARS.sub("_", name)
        name = _WHITESPACE_RUN.sub("_", name)
        name = _UNDERSCORE_RUN.sub("_", name)
        return name.strip("_")


default_sanitizer = InputSanitizer()

sanitize = SimpleNamespace(
    string=default_sanitizer.sanitize_string,
    object=default_sanitizer.sanitize_object,
    email=default_sanitizer.validate_email,
    url=default_sanitizer.validate_url,
    filename=default_sanitizer.sanitize_filename,
)
