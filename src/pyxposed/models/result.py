"""Explicit lookup outcomes.

The lookup clients map most failures to "no result" at their public
boundary.  Internally every path produces a :class:`LookupResult` so the
reason stays inspectable.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from pyxposed.models.location import LocationEntry

NOT_FOUND_OR_FAILED = "Not found or failed"


class ErrorKind(StrEnum):
    NO_SESSION = "NO_SESSION"
    RATE_LIMITED = "RATE_LIMITED"
    BACKOFF = "BACKOFF"
    NETWORK_ERROR = "NETWORK_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    UNKNOWN = "UNKNOWN"


class LookupResult(BaseModel):
    """Either resolved data or the reason there is none."""

    model_config = ConfigDict(frozen=True)

    data: LocationEntry | None = None
    error: ErrorKind | None = None
    status_code: int | None = None
    retry_after: int | None = None

    @property
    def ok(self) -> bool:
        return self.data is not None

    @classmethod
    def success(cls, data: LocationEntry) -> LookupResult:
        return cls(data=data)

    @classmethod
    def failure(
        cls,
        error: ErrorKind,
        *,
        status_code: int | None = None,
        retry_after: int | None = None,
    ) -> LookupResult:
        return cls(error=error, status_code=status_code, retry_after=retry_after)


class BatchLookupResult(BaseModel):
    """Per-username outcome of a detailed batch lookup."""

    model_config = ConfigDict(frozen=True)

    username: str
    data: LocationEntry | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
