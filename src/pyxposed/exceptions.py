"""Custom exception hierarchy for pyxposed."""

from __future__ import annotations


class XposedError(Exception):
    """Base exception for all pyxposed errors."""


class XposedConfigError(XposedError):
    """Invalid or missing configuration."""


class XposedStorageError(XposedError):
    """Durable store operation failed.

    Only raised to callers where no compensating retry exists, i.e. when
    clearing persisted history.
    """

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class XposedTransportError(XposedError):
    """HTTP-level failure (network error, timeout, invalid body)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
        timed_out: bool = False,
    ) -> None:
        self.status_code = status_code
        self.url = url
        self.timed_out = timed_out
        super().__init__(message)
