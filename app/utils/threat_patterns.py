"""Injection pattern tables used by the input sanitizer.

Each ``ThreatRule`` pairs a threat label with the patterns that detect it and
the option that enables it. Rules are applied in table order and strip their
matches until none remain, so nested payloads such as ``....//`` cannot
reassemble themselves after one pass.

These tables are a best-effort denylist. They do not replace parameterized
queries, context-aware output encoding or sandboxed execution elsewhere.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_I = re.IGNORECASE


@dataclass(frozen=True)
class ThreatRule:
    """A labeled class of injection payloads.

    Attributes:
        label: Threat category reported when any pattern matches.
        patterns: Regexes whose matches are removed, applied in order.
        option: Name of the SanitizationOptions toggle enabling this rule,
            or None for a rule that always runs.
    """

    label: str
    patterns: tuple[re.Pattern[str], ...]
    option: str | None = None

    def detect(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)

    def strip(self, text: str) -> str:
        return self.scrub(text)[0]

    def scrub(self, text: str) -> tuple[str, bool]:
        """Remove every match, repeating until the text is stable.

        Returns:
            Tuple of (cleaned_text, detected).
        """
        detected = False
        while True:
            removed = 0
            for pattern in self.patterns:
                text, count = pattern.subn("", text)
                removed += count
            if not removed:
                return text, detected
            detected = True


def _tag_block(tag: str) -> re.Pattern[str]:
    return re.compile(rf"<{tag}\b[^<]*(?:(?!</{tag}>)<[^<]*)*</{tag}>", _I)


XSS_RULE = ThreatRule(
    label="xss_attempt",
    option="prevent_xss",
    patterns=(
        _tag_block("script"),
        _tag_block("iframe"),
        _tag_block("object"),
        _tag_block("embed"),
        re.compile(r"<link\b[^>]*>", _I),
        re.compile(r"<meta\b[^>]*>", _I),
        re.compile(r"javascript:", _I),
        re.compile(r"vbscript:", _I),
        re.compile(r"data:text/html", _I),
        # Inline event handlers: onclick=, onload =, ...
        re.compile(r"\bon\w+\s*=", _I),
        # Percent-encoded < > " ' ( )
        re.compile(r"%3C|%3E|%22|%27|%28|%29", _I),
    ),
)

SQL_INJECTION_RULE = ThreatRule(
    label="sql_injection_attempt",
    option="prevent_sql_injection",
    patterns=(
        re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION)\b", _I),
        re.compile(r"--|/\*|\*/|;"),
        re.compile(r"\b(OR|AND)\b\s+\d+\s*=\s*\d+", _I),
        re.compile(r"'|\\'|''|%27|%22", _I),
    ),
)

NOSQL_INJECTION_RULE = ThreatRule(
    label="nosql_injection_attempt",
    option=None,
    patterns=(
        re.compile(r"\$where", _I),
        re.compile(r"\$ne", _I),
        re.compile(r"\$gt", _I),
        re.compile(r"\$lt", _I),
        re.compile(r"\$regex", _I),
        re.compile(r"\$exists", _I),
    ),
)

PATH_TRAVERSAL_RULE = ThreatRule(
    label="path_traversal_attempt",
    option="prevent_path_traversal",
    patterns=(
        re.compile(r"\.\./"),
        re.compile(r"\.\.\\"),
        re.compile(r"%2e%2e%2f", _I),
        re.compile(r"%2e%2e%5c", _I),
        re.compile(r"\.\.%2f", _I),
    ),
)

COMMAND_INJECTION_RULE = ThreatRule(
    label="command_injection_attempt",
    option="prevent_command_injection",
    patterns=(
        re.compile(r"[;&|`$(){}\[\]]"),
        re.compile(
            r"\b(cat|ls|pwd|whoami|id|uname|ps|netstat|ifconfig|ping|nslookup"
            r"|wget|curl|chmod|chown|rm|mv|cp|mkdir|rmdir)\b",
            _I,
        ),
    ),
)

DEFAULT_THREAT_RULES: tuple[ThreatRule, ...] = (
    XSS_RULE,
    SQL_INJECTION_RULE,
    NOSQL_INJECTION_RULE,
    PATH_TRAVERSAL_RULE,
    COMMAND_INJECTION_RULE,
)

HTML_ESCAPES: tuple[tuple[str, str], ...] = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
    ("/", "&#x2F;"),
)

SPECIAL_CHARS_PATTERN = re.compile(r"[<>'\"&]")

# Tail of a string that ends inside an HTML entity such as "&am" or "&#x2".
PARTIAL_ENTITY_TAIL = re.compile(r"&#?[0-9A-Za-z]*$")

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

FILENAME_UNSAFE_CHARS = re.compile(r'[<>:"|?*\\/]')
