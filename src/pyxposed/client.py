"""High-level async client tying history, cloud cache and provider together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict

from pyxposed._time import Clock, now_ms
from pyxposed._transport import AiohttpTransport, HttpTransport
from pyxposed.cloud.contribution import ContributionQueue
from pyxposed.cloud.lookup import CloudLookupClient
from pyxposed.cloud.state import CloudCacheState
from pyxposed.config import XposedConfig
from pyxposed.exceptions import XposedError
from pyxposed.history import HistoryCache
from pyxposed.models.location import LocationEntry, LookupMode
from pyxposed.models.result import ErrorKind
from pyxposed.models.status import BulkSyncResult, RateLimitStatus
from pyxposed.monitor import RateLimitMonitor
from pyxposed.provider import ProviderLookupClient, ProviderRateLimitState
from pyxposed.session import Session
from pyxposed.storage import DurableStore

_logger = logging.getLogger(__name__)


class ResolveSource(StrEnum):
    HISTORY = "history"
    CLOUD = "cloud"
    PROVIDER = "provider"


class ResolveResult(BaseModel):
    """Outcome of :meth:`XposedClient.resolve`."""

    model_config = ConfigDict(frozen=True)

    username: str
    data: LocationEntry | None = None
    source: ResolveSource | None = None
    error: ErrorKind | None = None
    retry_after: int | None = None

    @property
    def found(self) -> bool:
        return self.data is not None


class XposedClient:
    """Resolves usernames to locations with local, cloud and provider tiers.

    Usage::

        async with XposedClient(JsonFileStore("state.json")) as client:
            result = await client.resolve("someone", session)

    A lookup consults the history first, then the cloud cache when
    contribution is enabled, then the provider.  Provider hits are added
    to the history and queued for contribution; cloud hits are added to
    the history only.
    """

    def __init__(
        self,
        store: DurableStore,
        config: XposedConfig | None = None,
        *,
        http_session: aiohttp.ClientSession | None = None,
        transport: HttpTransport | None = None,
        provider_state: ProviderRateLimitState | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._config = config or XposedConfig()
        self._external_session = http_session is not None
        self._http_session = http_session
        self._transport = transport
        self._clock = clock

        self._history = HistoryCache(store, self._config, clock=clock)
        self._cloud_state = CloudCacheState(store, self._config, clock=clock)
        self._provider_state = provider_state if provider_state is not None else ProviderRateLimitState()
        self._cloud: CloudLookupClient | None = None
        self._contributions: ContributionQueue | None = None
        self._provider: ProviderLookupClient | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> XposedClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = AiohttpTransport(self._http_session)
        transport = self._transport
        self._cloud = CloudLookupClient(self._cloud_state, transport, self._config)
        self._contributions = ContributionQueue(self._cloud_state, transport, self._config)
        self._provider = ProviderLookupClient(
            transport,
            self._config,
            state=self._provider_state,
            clock=self._clock,
        )
        await self.load()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._cloud is not None:
            await self._cloud.aclose()
        if self._contributions is not None:
            await self._contributions.aclose()
        await self._history.aclose()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None
        self._cloud = None
        self._contributions = None
        self._provider = None

    async def load(self) -> None:
        """Load persisted history and cloud settings (safe to call repeatedly)."""
        loads = [self._cloud_state.load()]
        if not self._history.loaded:
            loads.append(self._history.load())
        await asyncio.gather(*loads)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def history(self) -> HistoryCache:
        return self._history

    @property
    def cloud_state(self) -> CloudCacheState:
        return self._cloud_state

    @property
    def cloud(self) -> CloudLookupClient:
        if self._cloud is None:
            raise XposedError("Client not initialized. Use 'async with XposedClient(...) as client:'")
        return self._cloud

    @property
    def contributions(self) -> ContributionQueue:
        if self._contributions is None:
            raise XposedError("Client not initialized. Use 'async with XposedClient(...) as client:'")
        return self._contributions

    @property
    def provider(self) -> ProviderLookupClient:
        if self._provider is None:
            raise XposedError("Client not initialized. Use 'async with XposedClient(...) as client:'")
        return self._provider

    def create_monitor(self, *, on_change: Callable[[RateLimitStatus], None] | None = None) -> RateLimitMonitor:
        """Monitor bound to this client's provider cooldown."""
        return RateLimitMonitor(self.provider, self._config, on_change=on_change)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def resolve(
        self,
        username: str,
        session: Session | None = None,
        mode: LookupMode = LookupMode.LIVE,
        *,
        use_history: bool = True,
    ) -> ResolveResult:
        """Resolve *username* through history, cloud cache and provider."""
        key = username.strip().lstrip("@").lower()
        if not key:
            return ResolveResult(username=key, error=ErrorKind.NOT_FOUND)

        if use_history:
            cached = self._history.get(key)
            if cached is not None:
                return ResolveResult(username=key, data=cached.data, source=ResolveSource.HISTORY)

        if self._cloud_state.enabled:
            cloud_result = await self.cloud.lookup_result(key)
            if cloud_result.data is not None:
                self._history.add(key, cloud_result.data, LookupMode.CLOUD)
                return ResolveResult(username=key, data=cloud_result.data, source=ResolveSource.CLOUD)
            _logger.debug("Cloud miss for %s (%s)", key, cloud_result.error)

        result = await self.provider.fetch_user_info_result(key, session)
        if result.data is None:
            return ResolveResult(username=key, error=result.error, retry_after=result.retry_after)

        self._history.add(key, result.data, mode)
        self.contributions.contribute(key, result.data)
        return ResolveResult(username=key, data=result.data, source=ResolveSource.PROVIDER)

    async def set_cloud_enabled(self, enabled: bool) -> None:
        await self._cloud_state.set_enabled(enabled)
        if not enabled and self._contributions is not None:
            self._contributions.clear()

    async def sync_history_to_cloud(self) -> BulkSyncResult:
        """Upload every history entry that did not come from the cloud."""
        entries = {e.username: e.data for e in self._history.entries if not e.data.from_cloud}
        if not entries:
            return BulkSyncResult(message="No local entries to sync")
        return await self.contributions.bulk_sync(entries)
