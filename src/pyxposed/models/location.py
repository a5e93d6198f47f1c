"""Location lookup records."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyxposed._time import now_ms
from pyxposed.models._base import XposedBaseModel


class LookupMode(StrEnum):
    """How a history entry was obtained."""

    LIVE = "live"
    CLOUD = "cloud"
    BATCH = "batch"


class LocationEntry(XposedBaseModel):
    """Resolved location of a single account.

    Parameters
    ----------
    location : str
        Country or region the account is based in.
    device : str
        Client the account signs in from.
    is_accurate : bool
        ``False`` when the provider flags the location as approximate.
    timestamp : int
        Epoch milliseconds when the record was produced.
    from_cloud : bool
        Whether the record came from the shared cloud cache.
    username : str or None
        Lowercase username, set by the provider client.
    """

    location: str
    device: str = ""
    is_accurate: bool = True
    timestamp: int = Field(default_factory=now_ms)
    from_cloud: bool = False
    username: str | None = None

    @field_validator("username")
    @classmethod
    def _lowercase_username(cls, value: str | None) -> str | None:
        return value.lower() if value is not None else None


class HistoryEntry(XposedBaseModel):
    """One lookup history record, keyed by lowercase username."""

    username: str
    data: LocationEntry
    lookup_time: int
    mode: LookupMode = LookupMode.LIVE

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: str) -> str:
        username = value.strip().lower()
        if not username:
            raise ValueError("username must be non-empty")
        return username

    @field_validator("mode", mode="before")
    @classmethod
    def _lenient_mode(cls, value: Any) -> Any:
        try:
            return LookupMode(value)
        except ValueError:
            return LookupMode.LIVE


class CloudEntry(BaseModel):
    """Compact wire form uploaded to the cloud cache."""

    model_config = ConfigDict(frozen=True)

    l: str  # noqa: E741
    d: str = ""
    a: bool = True
    t: int

    @classmethod
    def from_location(cls, entry: LocationEntry, *, now_ms: int) -> CloudEntry | None:
        """Build a wire entry, or ``None`` when *entry* has no location."""
        if not entry.location:
            return None
        return cls(l=entry.location, d=entry.device or "", a=entry.is_accurate, t=now_ms // 1000)
