"""Sanitisation of untrusted free text returned by the cloud cache."""

from __future__ import annotations

import re
from typing import Any

from pyxposed._constants import MAX_CLOUD_TEXT_LENGTH

_SCRIPT_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+=", re.IGNORECASE)


def sanitize_cloud_text(value: Any, *, max_length: int = MAX_CLOUD_TEXT_LENGTH) -> str | None:
    """Strip markup, script blocks and script patterns from *value*.

    Returns ``None`` for non-strings and for text that is empty once
    cleaned.
    """
    if not value or not isinstance(value, str):
        return None
    text = _SCRIPT_BLOCK_RE.sub("", value)
    text = _TAG_RE.sub("", text)
    text = _JS_SCHEME_RE.sub("", text)
    text = _EVENT_HANDLER_RE.sub("", text)
    text = text[:max_length].strip()
    return text or None
