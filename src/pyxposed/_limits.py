"""Backoff and request-budget bookkeeping for the cloud cache clients."""

from __future__ import annotations

from dataclasses import dataclass

from pyxposed._constants import RATE_WINDOW_MS, backoff_delay_ms


@dataclass(slots=True)
class Backoff:
    """Consecutive-failure counter with an exponential cooldown deadline."""

    consecutive_failures: int = 0
    backoff_until: int = 0

    def is_active(self, now: int) -> bool:
        return now < self.backoff_until

    def remaining_ms(self, now: int) -> int:
        return max(0, self.backoff_until - now)

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.backoff_until = 0

    def record_failure(self, now: int) -> int:
        """Count a failure and start the cooldown; returns its length in ms."""
        delay = backoff_delay_ms(self.consecutive_failures)
        self.consecutive_failures += 1
        self.backoff_until = now + delay
        return delay


@dataclass(slots=True)
class RequestWindow:
    """Fixed one-minute request budget.

    The window restarts on the first check made more than a minute after
    it opened.
    """

    max_requests: int
    window_start: int = 0
    count: int = 0

    def _roll(self, now: int) -> None:
        if now - self.window_start > RATE_WINDOW_MS:
            self.count = 0
            self.window_start = now

    def exhausted(self, now: int) -> bool:
        self._roll(now)
        return self.count >= self.max_requests

    def try_acquire(self, now: int) -> bool:
        """Consume one request from the budget if any is left."""
        if self.exhausted(now):
            return False
        self.count += 1
        return True
