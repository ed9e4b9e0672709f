"""Redaction helpers for safe logging. All external data must pass through these.

Provider credentials and message content never reach the logs: phone numbers,
e-mails, Telegram bot tokens and Meta access tokens are masked wherever they
appear inside a logged string.
"""

import hashlib
import re
from typing import Any

# Patterns that should never appear in logs
# Bot API URLs embed the token right after "bot", with no word boundary
_BOT_TOKEN_PATTERN = re.compile(r"(?<!\d)\d{6,}:[A-Za-z0-9_-]{30,}")
_META_TOKEN_PATTERN = re.compile(r"\bEAA[A-Za-z0-9]{20,}\b")
_BEARER_PATTERN = re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/=-]+")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII and secret patterns from a string."""
    # Tokens first: a bot token starts with digits the phone pattern would eat
    result = _BOT_TOKEN_PATTERN.sub(_REDACTED, value)
    result = _META_TOKEN_PATTERN.sub(_REDACTED, result)
    result = _BEARER_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}


def hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]
