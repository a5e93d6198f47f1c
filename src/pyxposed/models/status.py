"""Counters and derived status snapshots."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from pyxposed.models._base import XposedBaseModel


class RateLimitStatus(BaseModel):
    """Derived provider rate-limit status; never persisted."""

    model_config = ConfigDict(frozen=True)

    is_rate_limited: bool = False
    reset_time: int | None = None
    remaining_ms: int | None = None


class CloudStats(XposedBaseModel):
    """Cloud cache usage counters, persisted as camelCase JSON."""

    model_config = ConfigDict(frozen=False)

    contributions: int = 0
    lookups: int = 0
    hits: int = 0
    misses: int = 0
    errors: int = 0
    last_contribution: int | None = None


class ServerStats(XposedBaseModel):
    """Aggregate counters reported by the cloud cache server."""

    total_entries: int = 0
    total_contributions: int = 0
    last_updated: str | None = None


class BulkSyncResult(BaseModel):
    """Outcome of uploading local history to the cloud cache."""

    model_config = ConfigDict(frozen=True)

    synced: int = 0
    skipped: int = 0
    errors: int = 0
    message: str = Field(default="")
