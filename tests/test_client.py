from __future__ import annotations

import json
from typing import Any

import pytest
from _fakes import FakeClock, FakeTransport, json_response

from pyxposed import ErrorKind, LookupMode, XposedClient, XposedConfig, XposedError
from pyxposed._transport import HttpResponse
from pyxposed.client import ResolveSource
from pyxposed.session import Session
from pyxposed.storage import MemoryStore

_CONFIG = XposedConfig(contribute_delay_ms=60_000, min_interval_ms=0, history_debounce_ms=60_000)


class _Backend:
    """Routes requests to canned cloud and provider answers."""

    def __init__(self, cloud: dict[str, Any] | None = None, provider: dict[str, str] | None = None) -> None:
        self.cloud = cloud or {}
        self.provider = provider or {}
        self.transport = FakeTransport(handler=self._route)

    def _route(self, method: str, url: str, call: dict[str, Any]) -> HttpResponse:
        if url.endswith("/lookup"):
            user = call["params"]["users"]
            results = {user: self.cloud[user]} if user in self.cloud else {}
            return json_response({"results": results})
        if url.endswith("/contribute"):
            return json_response({"success": True, "accepted": len(call["json"]["entries"])})
        if url.endswith("/AboutAccountQuery"):
            name = json.loads(call["params"]["variables"])["screenName"].lower()
            if name not in self.provider:
                return HttpResponse(status=404)
            about = {"account_based_in": self.provider[name], "source": "Android App"}
            return json_response({"data": {"user_result_by_screen_name": {"result": {"about_profile": about}}}})
        raise AssertionError(f"unexpected {method} {url}")

    def urls(self, suffix: str) -> list[str]:
        return [c["url"] for c in self.transport.calls if c["url"].endswith(suffix)]


def _store(enabled: bool) -> MemoryStore:
    return MemoryStore({_CONFIG.cloud_enabled_key: "true" if enabled else "false"})


@pytest.mark.asyncio
async def test_provider_hit_is_recorded_and_contributed(clock: FakeClock, session: Session) -> None:
    backend = _Backend(provider={"alice": "Norway"})
    store = _store(enabled=True)

    async with XposedClient(store, _CONFIG, transport=backend.transport, clock=clock) as client:
        first = await client.resolve("@Alice", session)
        assert first.source == ResolveSource.PROVIDER
        assert first.data is not None
        assert first.data.location == "Norway"
        assert list(client.contributions.pending) == ["alice"]

        second = await client.resolve("alice", session)
        assert second.source == ResolveSource.HISTORY
        assert second.found

    assert len(backend.urls("/AboutAccountQuery")) == 1
    assert len(backend.urls("/lookup")) == 1
    assert len(backend.urls("/contribute")) == 1
    persisted = json.loads(store.snapshot()[_CONFIG.history_key])
    assert persisted[0]["username"] == "alice"
    assert persisted[0]["mode"] == "live"


@pytest.mark.asyncio
async def test_cloud_hit_skips_provider_and_is_not_recontributed(clock: FakeClock, session: Session) -> None:
    backend = _Backend(cloud={"bob": {"l": "Kenya", "d": "iOS", "a": True, "t": 1_700_000_000}})

    async with XposedClient(_store(enabled=True), _CONFIG, transport=backend.transport, clock=clock) as client:
        result = await client.resolve("bob", session)

        assert result.source == ResolveSource.CLOUD
        assert result.data is not None
        assert result.data.from_cloud is True
        assert client.history.get("bob").mode == LookupMode.CLOUD  # type: ignore[union-attr]
        assert len(client.contributions) == 0

    assert backend.urls("/AboutAccountQuery") == []


@pytest.mark.asyncio
async def test_cloud_is_skipped_when_not_opted_in(clock: FakeClock, session: Session) -> None:
    backend = _Backend(cloud={"carol": {"l": "Fiji"}}, provider={"carol": "Samoa"})

    async with XposedClient(_store(enabled=False), _CONFIG, transport=backend.transport, clock=clock) as client:
        result = await client.resolve("carol", session, LookupMode.BATCH)
        assert result.data is not None
        assert result.data.location == "Samoa"
        assert client.history.get("carol").mode == LookupMode.BATCH  # type: ignore[union-attr]
        assert len(client.contributions) == 0

    assert backend.urls("/lookup") == []


@pytest.mark.asyncio
async def test_resolve_reports_missing_session_and_unknown_users(clock: FakeClock, session: Session) -> None:
    backend = _Backend()

    async with XposedClient(_store(enabled=False), _CONFIG, transport=backend.transport, clock=clock) as client:
        no_session = await client.resolve("dave")
        assert no_session.error == ErrorKind.NO_SESSION
        assert not no_session.found

        unknown = await client.resolve("dave", session)
        assert unknown.error == ErrorKind.NOT_FOUND
        assert len(client.history) == 0


@pytest.mark.asyncio
async def test_disabling_cloud_drops_pending_contributions(clock: FakeClock, session: Session) -> None:
    backend = _Backend(provider={"erin": "Chad"})
    store = _store(enabled=True)

    async with XposedClient(store, _CONFIG, transport=backend.transport, clock=clock) as client:
        await client.resolve("erin", session)
        assert len(client.contributions) == 1

        await client.set_cloud_enabled(False)

        assert len(client.contributions) == 0
        assert store.snapshot()[_CONFIG.cloud_enabled_key] == "false"

    assert backend.urls("/contribute") == []


@pytest.mark.asyncio
async def test_sync_history_uploads_local_entries_only(clock: FakeClock) -> None:
    rows = [
        {"username": "local", "data": {"location": "Mali"}, "lookupTime": 2, "mode": "live"},
        {"username": "remote", "data": {"location": "Togo", "fromCloud": True}, "lookupTime": 1, "mode": "cloud"},
    ]
    store = _store(enabled=True)
    await store.set(_CONFIG.history_key, json.dumps(rows))
    backend = _Backend()

    async with XposedClient(store, _CONFIG, transport=backend.transport, clock=clock) as client:
        result = await client.sync_history_to_cloud()

    assert result.synced == 1
    contribute = [c for c in backend.transport.calls if c["url"].endswith("/contribute")]
    assert list(contribute[0]["json"]["entries"]) == ["local"]


def test_components_require_context_manager() -> None:
    client = XposedClient(MemoryStore(), _CONFIG, transport=FakeTransport())

    with pytest.raises(XposedError):
        _ = client.provider


@pytest.mark.asyncio
async def test_monitor_tracks_provider_cooldown(clock: FakeClock, session: Session) -> None:
    transport = FakeTransport(responses=[HttpResponse(status=429, headers={"x-rate-limit-reset": "1"})])

    async with XposedClient(_store(enabled=False), _CONFIG, transport=transport, clock=clock) as client:
        monitor = client.create_monitor()
        assert monitor.update().is_rate_limited is False

        result = await client.resolve("frank", session)
        assert result.error == ErrorKind.RATE_LIMITED
        assert result.retry_after == clock.now + 60_000

        status = monitor.update()
        assert status.is_rate_limited is True
        assert monitor.poll_interval_ms == _CONFIG.rate_limited_poll_ms
