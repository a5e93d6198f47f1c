from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from pyxposed.config import XposedConfig
from pyxposed.models.status import RateLimitStatus
from pyxposed.monitor import RateLimitMonitor

_CONFIG = XposedConfig(normal_poll_ms=10_000, rate_limited_poll_ms=2000)


@dataclass
class _FakeSource:
    status: RateLimitStatus = field(default_factory=RateLimitStatus)
    polls: int = 0

    def get_rate_limit_status(self) -> RateLimitStatus:
        self.polls += 1
        return self.status

    def limit(self, reset_time: int, remaining_ms: int = 5000) -> None:
        self.status = RateLimitStatus(is_rate_limited=True, reset_time=reset_time, remaining_ms=remaining_ms)

    def clear(self) -> None:
        self.status = RateLimitStatus()


def test_poll_interval_switches_with_rate_limit_state() -> None:
    source = _FakeSource()
    monitor = RateLimitMonitor(source, _CONFIG)

    monitor.update()
    assert monitor.poll_interval_ms == 10_000
    assert monitor.is_rate_limited is False

    source.limit(reset_time=1_000)
    monitor.update()
    assert monitor.poll_interval_ms == 2000
    assert monitor.is_rate_limited is True
    assert monitor.reset_time == 1_000
    assert monitor.remaining_ms == 5000

    source.clear()
    monitor.update()
    assert monitor.poll_interval_ms == 10_000
    assert monitor.reset_time is None


def test_dismissal_survives_same_deadline_but_not_a_new_one() -> None:
    source = _FakeSource()
    monitor = RateLimitMonitor(source, _CONFIG)

    source.limit(reset_time=1_000)
    monitor.update()
    monitor.dismiss()
    assert monitor.is_rate_limited is False
    assert monitor.status.is_rate_limited is True

    monitor.update()
    assert monitor.dismissed is True
    assert monitor.is_rate_limited is False

    source.limit(reset_time=2_000)
    monitor.update()
    assert monitor.dismissed is False
    assert monitor.is_rate_limited is True


def test_dismissal_resets_when_limit_clears() -> None:
    source = _FakeSource()
    monitor = RateLimitMonitor(source, _CONFIG)
    source.limit(reset_time=1_000)
    monitor.update()
    monitor.dismiss()

    source.clear()
    monitor.update()
    assert monitor.dismissed is False

    source.limit(reset_time=1_000)
    monitor.update()
    assert monitor.is_rate_limited is True


def test_on_change_fires_only_for_visible_changes() -> None:
    source = _FakeSource()
    seen: list[RateLimitStatus] = []
    monitor = RateLimitMonitor(source, _CONFIG, on_change=seen.append)

    monitor.update()
    assert seen == []

    source.limit(reset_time=1_000)
    monitor.update()
    monitor.update()
    assert len(seen) == 1

    source.clear()
    monitor.update()
    assert len(seen) == 2
    assert seen[-1].is_rate_limited is False


def test_check_status_does_not_touch_monitor_state() -> None:
    source = _FakeSource()
    monitor = RateLimitMonitor(source, _CONFIG)
    source.limit(reset_time=1_000)

    assert monitor.check_status().is_rate_limited is True
    assert monitor.is_rate_limited is False
    assert monitor.poll_interval_ms == 10_000


@pytest.mark.asyncio
async def test_background_polling_uses_adaptive_interval() -> None:
    source = _FakeSource()
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)
        if len(delays) == 2:
            source.limit(reset_time=1_000)
        await asyncio.sleep(0)

    monitor = RateLimitMonitor(source, _CONFIG, sleep=_sleep)
    async with monitor:
        assert monitor.running
        assert source.polls == 1
        for _ in range(10):
            await asyncio.sleep(0)

    assert not monitor.running
    assert delays[:2] == [10.0, 10.0]
    assert delays[2] == 2.0
    assert monitor.is_rate_limited is True
