"""State shared by the cloud lookup client and the contribution queue."""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from pyxposed._limits import Backoff, RequestWindow
from pyxposed._time import Clock, now_ms
from pyxposed.config import XposedConfig
from pyxposed.models.status import CloudStats
from pyxposed.storage import DurableStore

_logger = logging.getLogger(__name__)


class CloudCacheState:
    """Opt-in flag, usage counters, backoff and request budget.

    One instance is shared between :class:`~pyxposed.cloud.lookup.CloudLookupClient`
    and :class:`~pyxposed.cloud.contribution.ContributionQueue` so both
    respect the same cooldown and per-minute budget.  It owns the
    enabled-flag and stats keys of the store.
    """

    def __init__(
        self,
        store: DurableStore,
        config: XposedConfig | None = None,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._config = config or XposedConfig()
        self.clock = clock
        self.enabled = self._config.cloud_enabled_default
        self.stats = CloudStats()
        self.backoff = Backoff()
        self.window = RequestWindow(max_requests=self._config.max_requests_per_minute)
        self._load_future: asyncio.Future[None] | None = None

    @property
    def loaded(self) -> bool:
        fut = self._load_future
        return fut is not None and fut.done()

    async def load(self) -> None:
        """Read the enabled flag and stats from the store.

        Idempotent: the first call starts the read, concurrent and later
        callers await the same future.  Store failures are logged and the
        state is still marked loaded.
        """
        if self._load_future is None:
            self._load_future = asyncio.ensure_future(self._do_load())
        await asyncio.shield(self._load_future)

    async def _do_load(self) -> None:
        try:
            enabled_raw, stats_raw = await asyncio.gather(
                self._store.get(self._config.cloud_enabled_key),
                self._store.get(self._config.cloud_stats_key),
            )
        except Exception:
            _logger.warning("Could not read cloud cache settings", exc_info=True)
            return

        if enabled_raw is not None:
            self.enabled = enabled_raw == "true"
        if stats_raw:
            try:
                stored = CloudStats.model_validate_json(stats_raw)
            except ValidationError:
                _logger.debug("Ignoring unreadable cloud stats")
            else:
                self.stats = self.stats.model_copy(update=stored.model_dump(exclude_unset=True))
        _logger.debug("Cloud cache %s", "enabled" if self.enabled else "disabled")

    async def set_enabled(self, enabled: bool) -> None:
        """Toggle contribution and persist the flag."""
        self.enabled = enabled
        await self._store.set(self._config.cloud_enabled_key, "true" if enabled else "false")
        _logger.debug("Cloud cache %s", "enabled" if enabled else "disabled")

    def stats_snapshot(self) -> CloudStats:
        return self.stats.model_copy()

    async def save_stats(self) -> None:
        """Persist counters; failures are logged and otherwise ignored."""
        try:
            await self._store.set(self._config.cloud_stats_key, self.stats.model_dump_json(by_alias=True))
        except Exception:
            _logger.debug("Failed to persist cloud stats", exc_info=True)

    # ------------------------------------------------------------------
    # Backoff / budget
    # ------------------------------------------------------------------

    def in_cooldown(self) -> bool:
        return self.backoff.is_active(self.clock())

    def cooldown_remaining_ms(self) -> int:
        return self.backoff.remaining_ms(self.clock())

    def try_acquire_request(self) -> bool:
        return self.window.try_acquire(self.clock())

    def record_success(self) -> None:
        self.backoff.record_success()

    def record_failure(self) -> int:
        delay = self.backoff.record_failure(self.clock())
        _logger.debug(
            "Cloud cache failure #%d, backing off %d ms",
            self.backoff.consecutive_failures,
            delay,
        )
        return delay
