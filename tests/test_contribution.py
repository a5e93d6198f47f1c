from __future__ import annotations

import asyncio
import json

import pytest
from _fakes import FakeClock, FakeTransport, RecordingSleep, json_response

from pyxposed._transport import HttpResponse
from pyxposed.cloud.contribution import ContributionQueue
from pyxposed.cloud.state import CloudCacheState
from pyxposed.config import XposedConfig
from pyxposed.exceptions import XposedTransportError
from pyxposed.models.location import LocationEntry
from pyxposed.storage import MemoryStore

_CONFIG = XposedConfig(contribute_delay_ms=60_000, contribute_batch_size=25)


def _entry(location: str = "Germany", device: str = "Android") -> LocationEntry:
    return LocationEntry(location=location, device=device, is_accurate=True)


def _state(clock: FakeClock, config: XposedConfig = _CONFIG, store: MemoryStore | None = None) -> CloudCacheState:
    state = CloudCacheState(store or MemoryStore(), config, clock=clock)
    state.enabled = True
    return state


def test_contribute_rejected_when_disabled_or_invalid(clock: FakeClock) -> None:
    state = _state(clock)
    queue = ContributionQueue(state, FakeTransport(), _CONFIG)

    state.enabled = False
    assert queue.contribute("alice", _entry()) is False

    state.enabled = True
    assert queue.contribute("", _entry()) is False
    assert queue.contribute("x" * 51, _entry()) is False
    assert queue.contribute("alice", LocationEntry(location="")) is False
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_contribute_overwrites_pending_entry_for_same_user(clock: FakeClock) -> None:
    queue = ContributionQueue(_state(clock), FakeTransport(), _CONFIG)

    assert queue.contribute("Alice", _entry("Germany"))
    assert queue.contribute("alice", _entry("France", "iOS"))

    pending = queue.pending
    assert list(pending) == ["alice"]
    assert pending["alice"].l == "France"
    assert pending["alice"].d == "iOS"
    assert pending["alice"].t == clock.now // 1000
    assert queue.flush_scheduled
    queue.clear()
    assert not queue.flush_scheduled


@pytest.mark.asyncio
async def test_successful_flush_updates_stats(clock: FakeClock) -> None:
    store = MemoryStore()
    state = _state(clock, store=store)
    transport = FakeTransport(responses=[json_response({"success": True, "accepted": 2})])
    queue = ContributionQueue(state, transport, _CONFIG)
    queue.contribute("alice", _entry())
    queue.contribute("bob", _entry("France", ""))

    await queue.flush()

    call = transport.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{_CONFIG.cloud_api_url}/contribute"
    assert call["json"] == {
        "entries": {
            "alice": {"l": "Germany", "d": "Android", "a": True, "t": clock.now // 1000},
            "bob": {"l": "France", "d": "", "a": True, "t": clock.now // 1000},
        }
    }
    assert len(queue) == 0
    assert not queue.flush_scheduled
    assert state.stats.contributions == 2
    assert state.stats.last_contribution == clock.now
    assert state.backoff.consecutive_failures == 0
    persisted = json.loads(store.snapshot()[_CONFIG.cloud_stats_key])
    assert persisted["contributions"] == 2
    assert persisted["lastContribution"] == clock.now


@pytest.mark.asyncio
async def test_failed_flush_restores_entries_and_newer_contribution_wins(clock: FakeClock) -> None:
    state = _state(clock)
    queue: ContributionQueue

    def _handler(method: str, url: str, call: dict) -> HttpResponse:
        queue.contribute("alice", _entry("Japan"))
        return HttpResponse(status=500, text="boom")

    transport = FakeTransport(handler=_handler)
    queue = ContributionQueue(state, transport, _CONFIG)
    queue.contribute("alice", _entry("Germany"))
    queue.contribute("bob", _entry("France"))

    await queue.flush()

    pending = queue.pending
    assert pending["alice"].l == "Japan"
    assert pending["bob"].l == "France"
    assert state.stats.errors == 1
    assert state.backoff.consecutive_failures == 1
    assert state.backoff.backoff_until == clock.now + 1000
    assert queue.flush_scheduled
    queue.clear()


@pytest.mark.asyncio
async def test_network_error_and_timeout_restore_batch(clock: FakeClock) -> None:
    config = XposedConfig(contribute_delay_ms=60_000, cloud_contribute_timeout_ms=20)
    state = _state(clock, config)

    async def _hang(method: str, url: str, call: dict) -> HttpResponse:
        await asyncio.sleep(1)
        return HttpResponse(status=200)

    queue = ContributionQueue(state, FakeTransport(handler=_hang), config)
    queue.contribute("alice", _entry())
    await queue.flush()
    assert list(queue.pending) == ["alice"]
    assert state.backoff.consecutive_failures == 1

    queue.clear()
    state.backoff.record_success()
    queue = ContributionQueue(state, FakeTransport(responses=[XposedTransportError("down")]), config)
    queue.contribute("bob", _entry())
    await queue.flush()
    assert list(queue.pending) == ["bob"]
    assert state.stats.errors == 2
    queue.clear()


@pytest.mark.asyncio
async def test_flush_is_deferred_during_cooldown(clock: FakeClock) -> None:
    state = _state(clock)
    state.backoff.backoff_until = clock.now + 5000
    transport = FakeTransport()
    queue = ContributionQueue(state, transport, _CONFIG)
    queue.contribute("alice", _entry())

    await queue.flush()

    assert transport.calls == []
    assert len(queue) == 1
    assert queue.flush_scheduled
    queue.clear()


@pytest.mark.asyncio
async def test_flush_is_deferred_when_budget_exhausted(clock: FakeClock) -> None:
    config = XposedConfig(contribute_delay_ms=60_000, max_requests_per_minute=1)
    state = _state(clock, config)
    assert state.try_acquire_request()
    transport = FakeTransport()
    queue = ContributionQueue(state, transport, config)
    queue.contribute("alice", _entry())

    await queue.flush()

    assert transport.calls == []
    assert len(queue) == 1
    assert queue.flush_scheduled
    queue.clear()


@pytest.mark.asyncio
async def test_reaching_batch_size_flushes_immediately(clock: FakeClock) -> None:
    config = XposedConfig(contribute_delay_ms=60_000, contribute_batch_size=3)
    transport = FakeTransport(responses=[json_response({"accepted": 3})])
    queue = ContributionQueue(_state(clock, config), transport, config)

    for name in ("a", "b", "c"):
        queue.contribute(name, _entry())
    await asyncio.sleep(0.05)

    assert len(transport.calls) == 1
    assert set(transport.calls[0]["json"]["entries"]) == {"a", "b", "c"}
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_quiet_period_triggers_flush(clock: FakeClock) -> None:
    config = XposedConfig(contribute_delay_ms=10)
    transport = FakeTransport(responses=[json_response({"accepted": 1})])
    queue = ContributionQueue(_state(clock, config), transport, config)

    queue.contribute("alice", _entry())
    await asyncio.sleep(0.1)

    assert len(transport.calls) == 1
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_bulk_sync_batches_and_skips_invalid_entries(clock: FakeClock) -> None:
    config = XposedConfig(bulk_sync_batch_size=25, bulk_sync_pause_ms=500)
    transport = FakeTransport(responses=[json_response({"accepted": 25}), HttpResponse(status=503)])
    sleep = RecordingSleep()
    queue = ContributionQueue(_state(clock, config), transport, config, sleep=sleep)

    entries = {f"user{i}": _entry() for i in range(30)}
    entries["nowhere"] = LocationEntry(location="")

    result = await queue.bulk_sync(entries)

    assert len(transport.calls) == 2
    assert len(transport.calls[0]["json"]["entries"]) == 25
    assert len(transport.calls[1]["json"]["entries"]) == 5
    assert sleep.delays == [0.5]
    assert result.synced == 25
    assert result.skipped == 1
    assert result.errors == 5


@pytest.mark.asyncio
async def test_bulk_sync_requires_opt_in(clock: FakeClock) -> None:
    state = _state(clock)
    state.enabled = False
    transport = FakeTransport()
    queue = ContributionQueue(state, transport, _CONFIG)

    result = await queue.bulk_sync({"alice": _entry()})

    assert result.message == "Cloud cache not enabled"
    assert transport.calls == []


@pytest.mark.asyncio
async def test_aclose_makes_final_flush(clock: FakeClock) -> None:
    transport = FakeTransport(responses=[json_response({"accepted": 1})])
    queue = ContributionQueue(_state(clock), transport, _CONFIG)
    queue.contribute("alice", _entry())

    await queue.aclose()

    assert len(transport.calls) == 1
    assert not queue.flush_scheduled
    assert queue.contribute("bob", _entry()) is True
    assert not queue.flush_scheduled
