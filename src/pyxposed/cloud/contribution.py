"""Batched, backoff-aware uploads to the shared cloud cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from pyxposed._constants import COOLDOWN_RETRY_PADDING_MS, MAX_USERNAME_LENGTH, RATE_WINDOW_MS
from pyxposed._time import Sleep
from pyxposed._transport import HttpTransport, wait_for_ms
from pyxposed.cloud.state import CloudCacheState
from pyxposed.config import XposedConfig
from pyxposed.exceptions import XposedTransportError
from pyxposed.models.location import CloudEntry, LocationEntry
from pyxposed.models.status import BulkSyncResult

_logger = logging.getLogger(__name__)


def _accepted_count(body: Any, default: int) -> int:
    if isinstance(body, dict):
        accepted = body.get("accepted")
        if isinstance(accepted, int) and not isinstance(accepted, bool) and accepted > 0:
            return accepted
    return default


class ContributionQueue:
    """Queue of opt-in contributions flushed to ``POST /contribute``.

    Entries are keyed by lowercase username; a newer contribution replaces
    a pending one.  The queue flushes ``config.contribute_delay_ms`` after
    the last contribution, or immediately once it holds
    ``config.contribute_batch_size`` entries.

    A failed flush puts the drained entries back (entries contributed
    while the request was in flight win), starts the shared exponential
    backoff and schedules a retry once the cooldown has passed.
    """

    def __init__(
        self,
        state: CloudCacheState,
        transport: HttpTransport,
        config: XposedConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._state = state
        self._transport = transport
        self._config = config or XposedConfig()
        self._sleep = sleep
        self._queue: dict[str, CloudEntry] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> dict[str, CloudEntry]:
        return dict(self._queue)

    @property
    def flush_scheduled(self) -> bool:
        return self._timer is not None

    def __len__(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def contribute(self, username: str, entry: LocationEntry) -> bool:
        """Queue *entry* for upload; returns ``False`` when it was rejected."""
        if not self._state.enabled or not username or not entry.location:
            return False
        key = username.strip().lower()
        if not key or len(key) > MAX_USERNAME_LENGTH:
            return False

        wire = CloudEntry.from_location(entry, now_ms=self._state.clock())
        if wire is None:
            return False
        self._queue[key] = wire

        self._schedule_flush(self._config.contribute_delay_ms)
        if len(self._queue) >= self._config.contribute_batch_size:
            self._spawn_flush()
        return True

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_flush(self, delay_ms: int) -> None:
        self._cancel_timer()
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0, delay_ms) / 1000.0, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn_flush()

    def _spawn_flush(self) -> None:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Upload everything queued, or reschedule when not allowed yet."""
        if not self._queue:
            return
        self._cancel_timer()

        if self._state.in_cooldown():
            delay = self._state.cooldown_remaining_ms() + COOLDOWN_RETRY_PADDING_MS
            _logger.debug("Contribution flush deferred %d ms (cooldown)", delay)
            self._schedule_flush(delay)
            return

        if not self._state.try_acquire_request():
            _logger.debug("Contribution flush deferred (request budget exhausted)")
            self._schedule_flush(RATE_WINDOW_MS)
            return

        batch = self._queue
        self._queue = {}

        try:
            response = await wait_for_ms(
                self._transport.request(
                    "POST",
                    f"{self._config.cloud_api_url}/contribute",
                    timeout_ms=self._config.cloud_contribute_timeout_ms,
                    headers={"content-type": "application/json"},
                    json_body={"entries": {k: v.model_dump() for k, v in batch.items()}},
                ),
                self._config.cloud_contribute_timeout_ms,
            )
        except XposedTransportError as exc:
            _logger.debug("Contribution of %d entries failed: %s", len(batch), exc)
            await self._handle_failure(batch)
            return

        if not response.ok:
            _logger.debug("Contribution of %d entries rejected: HTTP %d", len(batch), response.status)
            await self._handle_failure(batch)
            return

        try:
            body = response.json()
        except XposedTransportError:
            body = None
        accepted = _accepted_count(body, len(batch))

        stats = self._state.stats
        stats.contributions += accepted
        stats.last_contribution = self._state.clock()
        self._state.record_success()
        _logger.debug("Contributed %d entries (%d accepted)", len(batch), accepted)
        await self._state.save_stats()

    async def _handle_failure(self, batch: dict[str, CloudEntry]) -> None:
        for key, wire in batch.items():
            # Entries contributed during the failed attempt are newer.
            self._queue.setdefault(key, wire)
        self._state.stats.errors += 1
        delay = self._state.record_failure()
        self._schedule_flush(delay)
        await self._state.save_stats()

    # ------------------------------------------------------------------
    # Bulk sync
    # ------------------------------------------------------------------

    async def bulk_sync(self, entries: Mapping[str, LocationEntry]) -> BulkSyncResult:
        """Upload many entries directly, bypassing the queue.

        Entries without a location are skipped.  Each batch is one request;
        a failed batch counts all its entries as errors and is not retried.
        """
        if not self._state.enabled:
            return BulkSyncResult(message="Cloud cache not enabled")
        if not entries:
            return BulkSyncResult(message="No entries to sync")

        synced = skipped = errors = 0
        wire_entries: list[tuple[str, CloudEntry]] = []
        now = self._state.clock()
        for username, entry in entries.items():
            key = username.strip().lower()
            wire = CloudEntry.from_location(entry, now_ms=now)
            if not key or len(key) > MAX_USERNAME_LENGTH or wire is None:
                skipped += 1
                continue
            wire_entries.append((key, wire))

        size = self._config.bulk_sync_batch_size
        batches = [wire_entries[i : i + size] for i in range(0, len(wire_entries), size)]
        _logger.debug("Bulk sync: %d entries in %d batches", len(wire_entries), len(batches))

        for index, batch in enumerate(batches):
            if index > 0:
                await self._sleep(self._config.bulk_sync_pause_ms / 1000.0)
            payload = {"entries": {key: wire.model_dump() for key, wire in batch}}
            try:
                response = await wait_for_ms(
                    self._transport.request(
                        "POST",
                        f"{self._config.cloud_api_url}/contribute",
                        timeout_ms=self._config.cloud_contribute_timeout_ms,
                        headers={"content-type": "application/json"},
                        json_body=payload,
                    ),
                    self._config.cloud_contribute_timeout_ms,
                )
            except XposedTransportError as exc:
                _logger.debug("Bulk sync batch %d failed: %s", index, exc)
                errors += len(batch)
                continue
            if not response.ok:
                _logger.debug("Bulk sync batch %d rejected: HTTP %d", index, response.status)
                errors += len(batch)
                continue
            try:
                body = response.json()
            except XposedTransportError:
                body = None
            synced += _accepted_count(body, len(batch))

        _logger.info("Bulk sync complete: %d synced, %d skipped, %d errors", synced, skipped, errors)
        return BulkSyncResult(
            synced=synced,
            skipped=skipped,
            errors=errors,
            message=f"Synced {synced} entries to cloud",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop every pending contribution and cancel scheduled flushes."""
        self._cancel_timer()
        self._queue.clear()

    async def aclose(self) -> None:
        """Stop scheduling, wait for in-flight flushes, try one last upload.

        Entries still queued afterwards (cooldown active or the final
        upload failed) are dropped.
        """
        self._closed = True
        self._cancel_timer()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._queue and not self._state.in_cooldown():
            await self.flush()
        self._cancel_timer()
        if self._queue:
            _logger.debug("Dropping %d unsent contributions on shutdown", len(self._queue))
