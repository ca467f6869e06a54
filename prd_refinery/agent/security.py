"""Redaction of secret-like material before it reaches disk."""

from __future__ import annotations

import re
from typing import Final

SECRET_VALUE_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("anthropic_api_key", re.compile(r"sk-ant-[A-Za-z0-9_-]{20,}")),
    ("openai_api_key", re.compile(r"sk-[A-Za-z0-9_-]{20,}")),
    ("github_token", re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}")),
    ("aws_access_key_id", re.compile(r"AKIA[0-9A-Z]{16}")),
    ("private_key_block", re.compile(r"-----BEGIN (?:RSA|OPENSSH|EC|PRIVATE) KEY-----")),
    ("bearer_token", re.compile(r"(?i)bearer\s+[A-Za-z0-9._-]{16,}")),
)

SENSITIVE_KEYWORDS: Final[tuple[str, ...]] = (
    "token",
    "secret",
    "password",
    "api_key",
    "apikey",
    "private_key",
    "access_key",
)

_SENSITIVE_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)(\b[A-Za-z0-9_.-]*(?:token|secret|api[_-]?key|password|private[_-]?key)"
    r"[A-Za-z0-9_.-]*\b)(\s*[:=]\s*)(\"[^\"]*\"|'[^']*'|[^\s,;]+)"
)
_URL_CREDENTIALS: Final[re.Pattern[str]] = re.compile(r"(?i)(https?://[^:\s/]+:)[^@\s/]+@")


def is_probably_sensitive_key(key: str) -> bool:
    """Return whether a mapping key likely names sensitive material."""
    lowered = key.lower()
    return any(keyword in lowered for keyword in SENSITIVE_KEYWORDS)


def find_potential_secrets(text: str) -> list[str]:
    """Return labels for secret-like substrings found in text."""
    return [label for label, pattern in SECRET_VALUE_PATTERNS if pattern.search(text)]


def redact_sensitive_text(text: str) -> str:
    """Replace secret-like values with redaction placeholders."""
    redacted = text
    for label, pattern in SECRET_VALUE_PATTERNS:
        redacted = pattern.sub(f"[REDACTED:{label}]", redacted)
    redacted = _SENSITIVE_ASSIGNMENT.sub(r"\1\2[REDACTED:value]", redacted)
    return _URL_CREDENTIALS.sub(r"\1[REDACTED:value]@", redacted)
