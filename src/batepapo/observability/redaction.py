"""Redaction helpers for safe logging. All external data must pass through these.

Phone numbers, WhatsApp JIDs, e-mails and gateway tokens never reach the logs.
"""

import re
from typing import Any

_JID_PATTERN = re.compile(r"[\w.\-]+@(s\.whatsapp\.net|g\.us|c\.us|lid)")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Keys whose values are secrets regardless of their shape
_SECRET_KEYS = frozenset({"token", "instance_token", "admintoken", "authorization", "secret"})

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _JID_PATTERN.sub(_REDACTED, value)
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
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {
        k: _REDACTED if k.lower() in _SECRET_KEYS else redact_value(v)
        for k, v in kwargs.items()
    }
