"""Durable key/value store interface and bundled implementations."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

_logger = logging.getLogger(__name__)


class DurableStore(Protocol):
    """Structural key/string store used for persistence.

    No ordering or transaction guarantees exist across keys.  Failures are
    raised as exceptions; callers decide whether they matter.
    """

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """Process-local store, mostly useful for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JsonFileStore:
    """Store backed by a single JSON object on disk.

    Every write rewrites the whole file through a temporary file and
    ``os.replace`` so a crash never leaves a half-written document behind.
    File I/O runs in the default executor.  Mutations are serialised so
    concurrent writes to different keys never drop each other.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> dict[str, str]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Store file %s is not valid JSON; starting empty", self._path)
            return {}
        if not isinstance(loaded, dict):
            return {}
        return {str(k): v for k, v in loaded.items() if isinstance(v, str)}

    def _write_file(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, separators=(",", ":"))
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _ensure_loaded(self) -> dict[str, str]:
        if self._data is None:
            loop = asyncio.get_running_loop()
            self._data = await loop.run_in_executor(None, self._read_file)
        return self._data

    async def get(self, key: str) -> str | None:
        async with self._lock:
            data = await self._ensure_loaded()
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._ensure_loaded()
            updated = dict(data)
            updated[key] = value
            await self._write(updated)

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await self._ensure_loaded()
            if key not in data:
                return
            await self._write({k: v for k, v in data.items() if k != key})

    async def _write(self, updated: dict[str, str]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_file, updated)
        self._data = updated
