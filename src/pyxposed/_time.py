"""Clock helpers.

Components take an injectable ``clock`` returning epoch milliseconds so
tests can move time without sleeping.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

Clock = Callable[[], int]
Sleep = Callable[[float], Awaitable[None]]


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)
