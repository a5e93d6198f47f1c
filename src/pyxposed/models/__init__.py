"""Data models for pyxposed."""

from pyxposed.models._base import XposedBaseModel
from pyxposed.models.location import CloudEntry, HistoryEntry, LocationEntry, LookupMode
from pyxposed.models.result import NOT_FOUND_OR_FAILED, BatchLookupResult, ErrorKind, LookupResult
from pyxposed.models.status import BulkSyncResult, CloudStats, RateLimitStatus, ServerStats

__all__ = [
    "BatchLookupResult",
    "BulkSyncResult",
    "CloudEntry",
    "CloudStats",
    "ErrorKind",
    "HistoryEntry",
    "LocationEntry",
    "LookupMode",
    "LookupResult",
    "NOT_FOUND_OR_FAILED",
    "RateLimitStatus",
    "ServerStats",
    "XposedBaseModel",
]
