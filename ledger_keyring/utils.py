"""Redaction helpers for log and error output."""
from collections.abc import Mapping
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "password",
    "token",
    "secret",
    "key",
    "authorization",
    "cookie",
)


def is_sensitive(name: str) -> bool:
    """True if a field name looks like it holds secret material."""
    lowered = name.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(value: Any, keep: int = 0) -> str:
    """Mask a secret value for display.

    Args:
        value: Secret to mask. Only its length is ever revealed.
        keep: Number of leading characters to keep visible (use 0 for
            passwords and key material).

    Returns:
        A masked string such as ``"[REDACTED:64]"`` or ``"ab…[REDACTED:64]"``.
    """
    if value is None:
        return REDACTED
    text = str(value)
    prefix = text[:keep] + "…" if keep > 0 and len(text) > keep * 4 else ""
    return f"{prefix}[REDACTED:{len(text)}]"


def sanitize_data(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive mapping values replaced.

    Nested mappings and lists are walked recursively. Non-container values
    are returned unchanged.
    """
    if isinstance(data, Mapping):
        sanitized = {}
        for key, value in data.items():
            if isinstance(key, str) and is_sensitive(key):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_data(value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_data(item) for item in data)
    return data
