"""Bounded, recency-ordered lookup history with debounced persistence."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import TypeAdapter

from pyxposed._time import Clock, now_ms
from pyxposed.config import XposedConfig
from pyxposed.exceptions import XposedStorageError
from pyxposed.models.location import HistoryEntry, LocationEntry, LookupMode
from pyxposed.storage import DurableStore

_logger = logging.getLogger(__name__)

_HISTORY_ADAPTER: TypeAdapter[list[HistoryEntry]] = TypeAdapter(list[HistoryEntry])


def _normalize_entries(entries: list[HistoryEntry], max_entries: int) -> list[HistoryEntry]:
    """Sort newest first, keep the first entry per username, cap the size."""
    ordered = sorted(entries, key=lambda e: e.lookup_time, reverse=True)
    seen: set[str] = set()
    result: list[HistoryEntry] = []
    for entry in ordered:
        if entry.username in seen:
            continue
        seen.add(entry.username)
        result.append(entry)
        if len(result) >= max_entries:
            break
    return result


class HistoryCache:
    """In-memory lookup history written through to a :class:`DurableStore`.

    At most ``config.history_max_entries`` entries are kept, one per
    lowercase username, ordered by ``lookup_time`` descending.  Mutations
    are persisted after ``config.history_debounce_ms`` of quiet; only the
    latest state is ever written.

    Usage::

        history = HistoryCache(store)
        await history.load()
        history.add("Someone", entry, LookupMode.LIVE)
        ...
        await history.aclose()
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
        self._clock = clock
        self._entries: list[HistoryEntry] = []
        self._loaded = False
        self._persist_handle: asyncio.TimerHandle | None = None
        self._persist_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def has_pending_write(self) -> bool:
        return self._persist_handle is not None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, username: str) -> HistoryEntry | None:
        key = username.strip().lower()
        for entry in self._entries:
            if entry.username == key:
                return entry
        return None

    def recent_usernames(self, limit: int = 10) -> list[str]:
        """Usernames of the *limit* most recent lookups."""
        return [entry.username for entry in self._entries[: max(0, limit)]]

    # ------------------------------------------------------------------
    # Load / mutate
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Populate the cache from the store.

        Missing or corrupt data leaves the cache empty; this never raises.
        """
        entries: list[HistoryEntry] = []
        try:
            stored = await self._store.get(self._config.history_key)
            if stored:
                entries = _HISTORY_ADAPTER.validate_json(stored)
        except ValueError:
            _logger.warning("Discarding unreadable lookup history", exc_info=True)
            entries = []
        except Exception:
            _logger.warning("Could not read lookup history from store", exc_info=True)
            entries = []

        self._entries = _normalize_entries(entries, self._config.history_max_entries)
        self._loaded = True
        _logger.debug("Loaded %d history entries", len(self._entries))

    def add(self, username: str, data: LocationEntry, mode: LookupMode) -> HistoryEntry:
        """Record a lookup as the most recent entry for *username*."""
        entry = HistoryEntry(
            username=username,
            data=data,
            lookup_time=self._clock(),
            mode=mode,
        )
        filtered = [e for e in self._entries if e.username != entry.username]
        self._entries = [entry, *filtered][: self._config.history_max_entries]
        self._schedule_persist()
        return entry

    def remove(self, username: str) -> bool:
        """Drop the entry for *username*; returns whether one existed."""
        key = username.strip().lower()
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.username != key]
        self._schedule_persist()
        return len(self._entries) != before

    async def clear(self) -> None:
        """Delete persisted history and empty the cache.

        Pending and in-flight writes are settled first so none of them can
        restore the deleted history.

        Raises
        ------
        XposedStorageError
            If the store could not delete the key.  The in-memory history
            is left untouched in that case.
        """
        self._cancel_pending_persist()
        if self._persist_tasks:
            # A write already under way must land before the key is removed.
            await asyncio.gather(*self._persist_tasks, return_exceptions=True)
            self._cancel_pending_persist()
        try:
            await self._store.remove(self._config.history_key)
        except Exception as exc:
            raise XposedStorageError(
                f"Failed to clear lookup history: {exc}",
                key=self._config.history_key,
            ) from exc
        self._entries = []

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _serialize(self) -> str:
        payload: list[dict[str, Any]] = [e.to_wire() for e in self._entries]
        return json.dumps(payload, separators=(",", ":"))

    def _schedule_persist(self) -> None:
        loop = asyncio.get_running_loop()
        if self._persist_handle is not None:
            self._persist_handle.cancel()
        self._persist_handle = loop.call_later(
            self._config.history_debounce_ms / 1000.0,
            self._on_persist_timer,
        )

    def _cancel_pending_persist(self) -> None:
        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None

    def _on_persist_timer(self) -> None:
        self._persist_handle = None
        task = asyncio.get_running_loop().create_task(self._persist_quietly())
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist(self) -> None:
        # Serialise at write time so the newest state is what lands on disk.
        await self._store.set(self._config.history_key, self._serialize())

    async def _persist_quietly(self) -> None:
        try:
            await self._persist()
        except Exception:
            _logger.warning("Failed to persist lookup history", exc_info=True)

    async def flush(self) -> None:
        """Write a pending snapshot now instead of waiting for the timer."""
        if self._persist_handle is None:
            return
        self._cancel_pending_persist()
        await self._persist()

    async def aclose(self) -> None:
        """Flush any pending snapshot and wait for in-flight writes."""
        try:
            await self.flush()
        except Exception:
            _logger.warning("Lost pending lookup history on shutdown", exc_info=True)
        if self._persist_tasks:
            await asyncio.gather(*self._persist_tasks, return_exceptions=True)
