"""Client configuration for pyxposed."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyxposed import _constants as c
from pyxposed.exceptions import XposedConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class XposedConfig:
    """Client configuration.

    All durations are in milliseconds to match the timestamps used by the
    data model (epoch milliseconds).

    Parameters
    ----------
    cloud_api_url : str
        Base URL of the shared cloud cache.
    provider_base_url : str
        Base URL of the provider GraphQL API.
    provider_query_id : str
        Fixed query identifier of the profile lookup operation.
    provider_bearer_token : str
        Public bearer token sent in the ``authorization`` header.
    cloud_lookup_timeout_ms, cloud_contribute_timeout_ms, cloud_stats_timeout_ms : int
        Per-request timeouts of the cloud endpoints.
    provider_timeout_ms : int
        Timeout of a single provider request.
    cloud_lookup_batch_delay_ms : int
        Quiet period used to coalesce concurrent cloud lookups into one
        request.
    cloud_lookup_batch_size : int
        Maximum usernames per cloud lookup request.
    contribute_delay_ms : int
        Quiet period before queued contributions are flushed.
    contribute_batch_size : int
        Queue size that triggers an immediate flush.
    bulk_sync_batch_size : int
        Entries per request when bulk syncing history to the cloud.
    bulk_sync_pause_ms : int
        Pause between bulk sync requests.
    max_requests_per_minute : int
        Client-side budget for cloud requests (lookups and flushes).
    min_interval_ms : int
        Minimum spacing between provider requests. Batch lookups wait
        twice this value between users.
    history_max_entries : int
        Upper bound of the lookup history.
    history_debounce_ms : int
        Quiet period before history mutations are persisted.
    normal_poll_ms, rate_limited_poll_ms : int
        Rate limit monitor poll intervals.
    cloud_enabled_default : bool
        Contribution state used when the store holds no flag.
    """

    cloud_api_url: str = c.CLOUD_API_URL
    provider_base_url: str = c.PROVIDER_BASE_URL
    provider_query_id: str = c.PROVIDER_QUERY_ID
    provider_bearer_token: str = c.PROVIDER_BEARER_TOKEN
    cloud_lookup_timeout_ms: int = 8000
    cloud_contribute_timeout_ms: int = 10_000
    cloud_stats_timeout_ms: int = 5000
    provider_timeout_ms: int = 10_000
    cloud_lookup_batch_delay_ms: int = 100
    cloud_lookup_batch_size: int = 50
    contribute_delay_ms: int = 3000
    contribute_batch_size: int = 25
    bulk_sync_batch_size: int = 25
    bulk_sync_pause_ms: int = 500
    max_requests_per_minute: int = 10_000
    min_interval_ms: int = 300
    history_max_entries: int = c.MAX_HISTORY_ENTRIES
    history_debounce_ms: int = 500
    normal_poll_ms: int = 10_000
    rate_limited_poll_ms: int = 2000
    cloud_enabled_default: bool = False
    history_key: str = c.HISTORY_STORAGE_KEY
    cloud_enabled_key: str = c.CLOUD_ENABLED_KEY
    cloud_stats_key: str = c.CLOUD_STATS_KEY

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.name.endswith("_ms") and value < 0:
                raise XposedConfigError(f"{f.name} must be >= 0, got {value}")
        if min(self.contribute_batch_size, self.bulk_sync_batch_size, self.cloud_lookup_batch_size) < 1:
            raise XposedConfigError("batch sizes must be >= 1")
        if self.history_max_entries < 1:
            raise XposedConfigError("history_max_entries must be >= 1")

    @classmethod
    def from_env(cls, **overrides: Any) -> XposedConfig:
        """Create configuration from environment variables.

        Every field can be set through ``XPOSED_<FIELD_NAME>`` (upper case).
        Explicit keyword arguments override environment values.

        Raises
        ------
        XposedConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            if f.name in overrides:
                continue
            raw = env.get(f"XPOSED_{f.name.upper()}")
            if raw is None:
                continue
            if f.type in ("int", int):
                try:
                    config_kwargs[f.name] = int(raw)
                except ValueError as exc:
                    raise XposedConfigError(f"XPOSED_{f.name.upper()} must be an integer, got {raw!r}") from exc
            elif f.type in ("bool", bool):
                config_kwargs[f.name] = _env_bool(raw, f.default)  # type: ignore[arg-type]
            else:
                config_kwargs[f.name] = raw

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
