"""Adaptive poller of the provider rate-limit status for UI banners."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any, Protocol

from pyxposed._time import Sleep
from pyxposed.config import XposedConfig
from pyxposed.models.status import RateLimitStatus

_logger = logging.getLogger(__name__)


class RateLimitSource(Protocol):
    def get_rate_limit_status(self) -> RateLimitStatus:
        ...


class RateLimitMonitor:
    """Polls a :class:`RateLimitSource` and tracks banner dismissal.

    The poll interval is ``config.normal_poll_ms`` while not limited and
    ``config.rate_limited_poll_ms`` while limited.  A dismissed banner
    comes back when a new cooldown deadline appears, and the dismissal is
    forgotten once the cooldown ends.

    ``on_change`` is invoked with the latest status after every poll that
    changed the visible state.
    """

    def __init__(
        self,
        source: RateLimitSource,
        config: XposedConfig | None = None,
        *,
        on_change: Callable[[RateLimitStatus], None] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._source = source
        self._config = config or XposedConfig()
        self._on_change = on_change
        self._sleep = sleep
        self._status = RateLimitStatus()
        self._dismissed = False
        self._last_reset_time: int | None = None
        self._was_limited = False
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Visible state
    # ------------------------------------------------------------------

    @property
    def is_rate_limited(self) -> bool:
        return self._status.is_rate_limited and not self._dismissed

    @property
    def reset_time(self) -> int | None:
        return self._status.reset_time

    @property
    def remaining_ms(self) -> int | None:
        return self._status.remaining_ms

    @property
    def dismissed(self) -> bool:
        return self._dismissed

    @property
    def status(self) -> RateLimitStatus:
        return self._status

    @property
    def poll_interval_ms(self) -> int:
        if self._was_limited:
            return self._config.rate_limited_poll_ms
        return self._config.normal_poll_ms

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def check_status(self) -> RateLimitStatus:
        """Read the source directly without touching monitor state."""
        return self._source.get_rate_limit_status()

    def dismiss(self) -> None:
        self._dismissed = True

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def update(self) -> RateLimitStatus:
        """Poll once and apply the dismissal rules."""
        before = (self.is_rate_limited, self._status.reset_time)
        status = self.check_status()

        if status.reset_time is not None and status.reset_time != self._last_reset_time:
            self._last_reset_time = status.reset_time
            self._dismissed = False

        if not status.is_rate_limited and self._was_limited:
            self._last_reset_time = None
            self._dismissed = False

        if status.is_rate_limited != self._was_limited:
            _logger.debug(
                "Provider rate limit %s; polling every %d ms",
                "active" if status.is_rate_limited else "cleared",
                self._config.rate_limited_poll_ms if status.is_rate_limited else self._config.normal_poll_ms,
            )
        self._was_limited = status.is_rate_limited
        self._status = status

        if self._on_change is not None and before != (self.is_rate_limited, status.reset_time):
            try:
                self._on_change(status)
            except Exception:
                _logger.debug("on_change callback failed", exc_info=True)
        return status

    async def _run(self) -> None:
        while True:
            await self._sleep(self.poll_interval_ms / 1000.0)
            self.update()

    def start(self) -> None:
        """Poll once immediately, then keep polling in a background task."""
        if self.running:
            return
        self.update()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def __aenter__(self) -> RateLimitMonitor:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
