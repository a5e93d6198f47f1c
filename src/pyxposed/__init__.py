"""pyxposed - Async username-to-location lookups with local history and a shared cloud cache."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyxposed")
except PackageNotFoundError:
    __version__ = "0+local"
from pyxposed.client import ResolveResult, ResolveSource, XposedClient
from pyxposed.cloud import CloudCacheState, CloudLookupClient, ContributionQueue, sanitize_cloud_text
from pyxposed.config import XposedConfig
from pyxposed.exceptions import (
    XposedConfigError,
    XposedError,
    XposedStorageError,
    XposedTransportError,
)
from pyxposed.history import HistoryCache
from pyxposed.models import (
    BatchLookupResult,
    BulkSyncResult,
    CloudEntry,
    CloudStats,
    ErrorKind,
    HistoryEntry,
    LocationEntry,
    LookupMode,
    LookupResult,
    RateLimitStatus,
    ServerStats,
)
from pyxposed.monitor import RateLimitMonitor
from pyxposed.provider import ProviderLookupClient, ProviderRateLimitState
from pyxposed.session import Session
from pyxposed.storage import DurableStore, JsonFileStore, MemoryStore

__all__ = [
    "__version__",
    "BatchLookupResult",
    "BulkSyncResult",
    "CloudCacheState",
    "CloudEntry",
    "CloudLookupClient",
    "CloudStats",
    "ContributionQueue",
    "DurableStore",
    "ErrorKind",
    "HistoryCache",
    "HistoryEntry",
    "JsonFileStore",
    "LocationEntry",
    "LookupMode",
    "LookupResult",
    "MemoryStore",
    "ProviderLookupClient",
    "ProviderRateLimitState",
    "RateLimitMonitor",
    "RateLimitStatus",
    "ResolveResult",
    "ResolveSource",
    "ServerStats",
    "Session",
    "XposedClient",
    "XposedConfig",
    "XposedConfigError",
    "XposedError",
    "XposedStorageError",
    "XposedTransportError",
    "sanitize_cloud_text",
]
