"""Helpers for safe debug logging.

Provider requests carry session cookies, a bearer token and a CSRF token.
Header maps and cookie strings pass through here before they are logged.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_SENSITIVE_HEADERS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-csrf-token",
    }
)

_COOKIE_SECRET_RE = re.compile(r"\b(auth_token|ct0)=([^;\s]+)", re.IGNORECASE)

_REDACTED = "<redacted>"


def redact_cookie_string(value: str) -> str:
    """Mask ``auth_token``/``ct0`` values inside a cookie-style string."""
    return _COOKIE_SECRET_RE.sub(lambda m: f"{m.group(1)}={_REDACTED}", value)


def redact_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *headers* with credentials masked."""
    redacted: dict[str, Any] = {}
    for key, value in headers.items():
        name = str(key)
        if name.lower() in _SENSITIVE_HEADERS:
            redacted[name] = _REDACTED
        elif isinstance(value, str):
            redacted[name] = redact_cookie_string(value)
        else:
            redacted[name] = value
    return redacted


def redact_for_log(value: Any, *, max_string: int = 256) -> Any:
    """Return a redacted, size-bounded copy of *value* for debug logs."""
    if isinstance(value, Mapping):
        return {k: redact_for_log(v, max_string=max_string) for k, v in redact_headers(value).items()}
    if isinstance(value, (list, tuple)):
        return [redact_for_log(v, max_string=max_string) for v in value]
    if isinstance(value, str):
        text = redact_cookie_string(value)
        if len(text) > max_string:
            return f"{text[:max_string]}…<truncated>"
        return text
    return value
