"""Direct lookups against the provider's GraphQL API.

The provider has no batch endpoint, so batches are fetched one user at a
time with a fixed spacing.  A 429 response sets a cooldown deadline taken
from the ``x-rate-limit-reset`` header; until it passes no request is made.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pyxposed._constants import DEFAULT_RATE_LIMIT_COOLDOWN_MS, PROVIDER_OPERATION, RATE_LIMIT_RESET_HEADER
from pyxposed._redact import redact_for_log
from pyxposed._time import Clock, Sleep, now_ms
from pyxposed._transport import HttpResponse, HttpTransport, wait_for_ms
from pyxposed.config import XposedConfig
from pyxposed.exceptions import XposedTransportError
from pyxposed.models.location import LocationEntry
from pyxposed.models.result import NOT_FOUND_OR_FAILED, BatchLookupResult, ErrorKind, LookupResult
from pyxposed.models.status import RateLimitStatus
from pyxposed.session import Session

_logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass(slots=True)
class ProviderRateLimitState:
    """Request spacing and cooldown bookkeeping for the provider.

    Pass the same instance to several clients to make them share one
    cooldown and one request spacing.  ``lock`` serialises request starts.
    """

    last_request_time: int = 0
    reset_deadline: int = 0
    consecutive_failures: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def is_rate_limited(self, now: int) -> bool:
        return now < self.reset_deadline

    def status(self, now: int) -> RateLimitStatus:
        if not self.is_rate_limited(now):
            return RateLimitStatus()
        return RateLimitStatus(
            is_rate_limited=True,
            reset_time=self.reset_deadline,
            remaining_ms=self.reset_deadline - now,
        )

    def clear(self) -> None:
        self.reset_deadline = 0
        self.consecutive_failures = 0


def _parse_reset_header(value: str | None, now: int) -> int:
    """Cooldown deadline (epoch ms) from an epoch-seconds reset header."""
    if value:
        try:
            reset_ms = int(value.strip()) * 1000
        except ValueError:
            reset_ms = 0
        if reset_ms > now:
            return reset_ms
    return now + DEFAULT_RATE_LIMIT_COOLDOWN_MS


def _parse_profile(body: Any, username: str, now: int) -> LocationEntry | None:
    """Extract the about-profile block; ``None`` when it carries no location."""
    node: Any = body
    for key in ("data", "user_result_by_screen_name", "result", "about_profile"):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    if not isinstance(node, dict):
        return None

    location = node.get("account_based_in")
    if not isinstance(location, str) or not location.strip():
        return None
    device = node.get("source")
    return LocationEntry(
        location=location.strip(),
        device=device if isinstance(device, str) else "",
        is_accurate=node.get("location_accurate") is not False,
        timestamp=now,
        from_cloud=False,
        username=username,
    )


class ProviderLookupClient:
    """Rate-limited client for the provider's profile lookup.

    Usage::

        provider = ProviderLookupClient(transport)
        entry = await provider.fetch_user_info("someone", session)
        status = provider.get_rate_limit_status()
    """

    def __init__(
        self,
        transport: HttpTransport,
        config: XposedConfig | None = None,
        *,
        state: ProviderRateLimitState | None = None,
        clock: Clock = now_ms,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._config = config or XposedConfig()
        self._state = state if state is not None else ProviderRateLimitState()
        self._clock = clock
        self._sleep = sleep
        self._inflight: dict[str, asyncio.Future[LookupResult]] = {}

    @property
    def state(self) -> ProviderRateLimitState:
        return self._state

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def _url(self) -> str:
        return f"{self._config.provider_base_url}/{self._config.provider_query_id}/{PROVIDER_OPERATION}"

    def _headers(self, session: Session) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self._config.provider_bearer_token}",
            "x-csrf-token": session.csrf_token,
            "x-twitter-active-user": "yes",
            "x-twitter-auth-type": "OAuth2Session",
            "content-type": "application/json",
            "accept-language": "en-US,en;q=0.9",
            "cookie": session.cookie_header(),
        }

    async def _acquire_request_slot(self) -> bool:
        """Wait for the minimum spacing, in call order.

        Returns ``False`` when a cooldown started while waiting.
        """
        async with self._state.lock:
            elapsed = self._clock() - self._state.last_request_time
            wait_ms = self._config.min_interval_ms - elapsed
            if wait_ms > 0:
                await self._sleep(wait_ms / 1000.0)
            if self._state.is_rate_limited(self._clock()):
                return False
            self._state.last_request_time = self._clock()
            return True

    def _handle_error_status(self, response: HttpResponse, username: str) -> LookupResult:
        status = response.status
        if status in (401, 403):
            self._state.consecutive_failures += 1
            _logger.warning("Provider rejected credentials (HTTP %d); re-login required", status)
            return LookupResult.failure(ErrorKind.UNAUTHORIZED, status_code=status)
        if status == 404:
            return LookupResult.failure(ErrorKind.NOT_FOUND, status_code=status)
        if status == 429:
            now = self._clock()
            deadline = _parse_reset_header(response.header(RATE_LIMIT_RESET_HEADER), now)
            self._state.reset_deadline = deadline
            self._state.consecutive_failures += 1
            _logger.warning("Provider rate limit hit; cooling down for %d s", (deadline - now + 999) // 1000)
            return LookupResult.failure(ErrorKind.RATE_LIMITED, status_code=status, retry_after=deadline)
        self._state.consecutive_failures += 1
        _logger.debug("Provider lookup for %s failed: HTTP %d %s", username, status, redact_for_log(response.text))
        return LookupResult.failure(ErrorKind.UNKNOWN, status_code=status)

    # ------------------------------------------------------------------
    # Single lookups
    # ------------------------------------------------------------------

    async def fetch_user_info_result(self, username: str, session: Session | None) -> LookupResult:
        """Like :meth:`fetch_user_info` but keeps the failure reason.

        Concurrent calls for the same username share one request.
        """
        if session is None or not session.is_complete:
            return LookupResult.failure(ErrorKind.NO_SESSION)

        screen_name = username.strip().lstrip("@")
        key = screen_name.lower()
        inflight = self._inflight.get(key)
        if inflight is None:
            inflight = asyncio.ensure_future(self._fetch(screen_name, session))
            self._inflight[key] = inflight
            inflight.add_done_callback(lambda done: self._forget_inflight(key, done))
        return await asyncio.shield(inflight)

    def _forget_inflight(self, key: str, done: asyncio.Future[LookupResult]) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]

    async def _fetch(self, screen_name: str, session: Session) -> LookupResult:
        if self._state.is_rate_limited(self._clock()) or not await self._acquire_request_slot():
            return LookupResult.failure(ErrorKind.RATE_LIMITED, retry_after=self._state.reset_deadline)

        params = {"variables": json.dumps({"screenName": screen_name}, separators=(",", ":"))}
        try:
            response = await wait_for_ms(
                self._transport.request(
                    "GET",
                    self._url(),
                    timeout_ms=self._config.provider_timeout_ms,
                    headers=self._headers(session),
                    params=params,
                ),
                self._config.provider_timeout_ms,
            )
        except XposedTransportError as exc:
            self._state.consecutive_failures += 1
            _logger.debug("Provider lookup for %s failed: %s", screen_name, exc)
            return LookupResult.failure(ErrorKind.NETWORK_ERROR)

        if not response.ok:
            return self._handle_error_status(response, screen_name)

        self._state.consecutive_failures = 0
        try:
            body = response.json()
        except XposedTransportError:
            _logger.debug("Provider returned a non-JSON body for %s", screen_name)
            return LookupResult.failure(ErrorKind.PARSE_ERROR, status_code=response.status)

        entry = _parse_profile(body, screen_name.lower(), self._clock())
        if entry is None:
            return LookupResult.failure(ErrorKind.NOT_FOUND, status_code=response.status)
        return LookupResult.success(entry)

    async def fetch_user_info(self, username: str, session: Session | None) -> LocationEntry | None:
        """Fetch *username* from the provider, or ``None`` for any failure."""
        result = await self.fetch_user_info_result(username, session)
        return result.data

    async def lookup(self, username: str, auth_token: str, csrf_token: str) -> LocationEntry | None:
        """Shorthand for :meth:`fetch_user_info` with raw tokens."""
        session = Session(auth_token=auth_token, csrf_token=csrf_token, is_authenticated=True)
        return await self.fetch_user_info(username, session)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        usernames: Sequence[str],
        session: Session,
        on_progress: ProgressCallback | None,
    ) -> list[LookupResult | None]:
        """Sequentially look up *usernames*.

        The returned list is aligned with *usernames*; ``None`` marks users
        that were never attempted because a cooldown started.
        """
        results: list[LookupResult | None] = [None] * len(usernames)
        total = len(usernames)
        for index, username in enumerate(usernames):
            if self._state.is_rate_limited(self._clock()):
                _logger.debug("Batch stopped at %d/%d: provider cooldown active", index, total)
                break

            if on_progress is not None:
                try:
                    on_progress(index, total, username)
                except Exception:
                    _logger.debug("on_progress callback failed", exc_info=True)

            results[index] = await self.fetch_user_info_result(username, session)

            if index < total - 1 and not self._state.is_rate_limited(self._clock()):
                await self._sleep(2 * self._config.min_interval_ms / 1000.0)
        return results

    async def lookup_batch(
        self,
        usernames: Sequence[str],
        session: Session | None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, LocationEntry]:
        """Look up several users; successes keyed by lowercase username.

        Failed users are left out.  The batch ends early, without error,
        once the provider starts a cooldown.
        """
        if not usernames or session is None or not session.is_complete:
            return {}
        found: dict[str, LocationEntry] = {}
        for username, result in zip(usernames, await self._run_batch(usernames, session, on_progress)):
            if result is not None and result.data is not None:
                found[username.lower()] = result.data
        return found

    async def lookup_batch_with_details(
        self,
        usernames: Sequence[str],
        session: Session | None,
        on_progress: ProgressCallback | None = None,
    ) -> list[BatchLookupResult]:
        """Like :meth:`lookup_batch` but reports every input username, in order."""
        if not usernames:
            return []
        if session is None or not session.is_complete:
            outcomes: list[LookupResult | None] = [LookupResult.failure(ErrorKind.NO_SESSION)] * len(usernames)
        else:
            outcomes = await self._run_batch(usernames, session, on_progress)

        details: list[BatchLookupResult] = []
        for username, result in zip(usernames, outcomes):
            if result is not None and result.data is not None:
                details.append(BatchLookupResult(username=username, data=result.data))
                continue
            kind = result.error if result is not None else ErrorKind.RATE_LIMITED
            details.append(BatchLookupResult(username=username, error=NOT_FOUND_OR_FAILED, error_kind=kind))
        return details

    # ------------------------------------------------------------------
    # Rate limit state
    # ------------------------------------------------------------------

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self._state.status(self._clock())

    def clear_rate_limit(self) -> None:
        """Forget the cooldown and failure count (out-of-band recovery)."""
        self._state.clear()
