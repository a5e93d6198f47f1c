from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from pyxposed.storage import JsonFileStore, MemoryStore


@pytest.mark.asyncio
async def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "store.json"
    store = JsonFileStore(path)

    assert await store.get("missing") is None
    await store.set("cloud_contribution_enabled", "true")
    await store.set("cloud_stats", '{"hits":1}')
    await store.remove("cloud_stats")
    await store.remove("never-set")

    reopened = JsonFileStore(path)
    assert await reopened.get("cloud_contribution_enabled") == "true"
    assert await reopened.get("cloud_stats") is None
    assert json.loads(path.read_text(encoding="utf-8")) == {"cloud_contribution_enabled": "true"}
    assert [p.name for p in path.parent.iterdir()] == ["store.json"]


@pytest.mark.asyncio
async def test_json_file_store_starts_empty_on_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{broken", encoding="utf-8")
    store = JsonFileStore(path)

    assert await store.get("anything") is None
    await store.set("key", "value")
    assert json.loads(path.read_text(encoding="utf-8")) == {"key": "value"}


@pytest.mark.asyncio
async def test_memory_store_round_trip() -> None:
    store = MemoryStore({"a": "1"})
    await store.set("b", "2")
    await store.remove("a")
    assert await store.get("a") is None
    assert store.snapshot() == {"b": "2"}


@pytest.mark.asyncio
async def test_json_file_store_keeps_concurrent_writes_to_different_keys(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    store = JsonFileStore(path)

    await asyncio.gather(
        store.set("x_posed_lookup_history", "H"),
        store.set("cloud_stats", "S"),
        store.set("cloud_contribution_enabled", "true"),
    )
    await asyncio.gather(store.remove("cloud_stats"), store.set("extra", "E"))

    expected = {"x_posed_lookup_history": "H", "cloud_contribution_enabled": "true", "extra": "E"}
    assert json.loads(path.read_text(encoding="utf-8")) == expected
    assert await store.get("x_posed_lookup_history") == "H"
    assert await JsonFileStore(path).get("extra") == "E"
