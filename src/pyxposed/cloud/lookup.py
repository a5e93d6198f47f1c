"""Reads from the shared cloud cache.

Concurrent single-user lookups are coalesced: every ``lookup`` made within
``config.cloud_lookup_batch_delay_ms`` of the previous one joins the same
``GET /lookup?users=a,b,c`` request, and each caller is resolved from the
shared response.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from pyxposed._transport import HttpTransport, wait_for_ms
from pyxposed.cloud._sanitize import sanitize_cloud_text
from pyxposed.cloud.state import CloudCacheState
from pyxposed.config import XposedConfig
from pyxposed.exceptions import XposedTransportError
from pyxposed.models.location import LocationEntry
from pyxposed.models.result import ErrorKind, LookupResult
from pyxposed.models.status import ServerStats

_logger = logging.getLogger(__name__)

_ACCEPT_JSON = {"accept": "application/json"}


def _epoch_seconds(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return None


def _clean_username(username: str) -> str:
    return username.strip().lower() if username else ""


class CloudLookupClient:
    """Looks usernames up in the cloud cache.

    Requests are skipped while the shared backoff is active or the request
    budget is spent.  No call raises; failures come back as ``None`` (or
    a :class:`LookupResult` carrying the reason).
    """

    def __init__(
        self,
        state: CloudCacheState,
        transport: HttpTransport,
        config: XposedConfig | None = None,
    ) -> None:
        self._state = state
        self._transport = transport
        self._config = config or XposedConfig()
        self._waiters: dict[str, list[asyncio.Future[LookupResult]]] = {}
        self._batch_timer: asyncio.TimerHandle | None = None
        self._batch_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> list[str]:
        """Usernames waiting for the next coalesced request."""
        return list(self._waiters)

    # ------------------------------------------------------------------
    # Single lookups (coalesced)
    # ------------------------------------------------------------------

    async def lookup(self, username: str) -> LocationEntry | None:
        """Return the cached location for *username*, or ``None``."""
        result = await self.lookup_result(username)
        return result.data

    async def lookup_result(self, username: str) -> LookupResult:
        clean = _clean_username(username)
        if not clean:
            return LookupResult.failure(ErrorKind.NOT_FOUND)

        self._state.stats.lookups += 1
        loop = asyncio.get_running_loop()
        future: asyncio.Future[LookupResult] = loop.create_future()
        self._waiters.setdefault(clean, []).append(future)

        if self._batch_timer is not None:
            self._batch_timer.cancel()
            self._batch_timer = None
        if len(self._waiters) >= self._config.cloud_lookup_batch_size:
            self._start_batch()
        else:
            self._batch_timer = loop.call_later(
                self._config.cloud_lookup_batch_delay_ms / 1000.0,
                self._start_batch,
            )
        return await future

    def _start_batch(self) -> None:
        self._batch_timer = None
        waiters, self._waiters = self._waiters, {}
        if not waiters:
            return
        task = asyncio.get_running_loop().create_task(self._resolve_waiters(waiters))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    async def _resolve_waiters(self, waiters: dict[str, list[asyncio.Future[LookupResult]]]) -> None:
        results: dict[str, LookupResult] = {}
        try:
            results = await self._fetch(list(waiters))
        except Exception:
            _logger.exception("Coalesced cloud lookup failed unexpectedly")
        finally:
            for username, futures in waiters.items():
                result = results.get(username, LookupResult.failure(ErrorKind.UNKNOWN))
                for future in futures:
                    if not future.done():
                        future.set_result(result)

    # ------------------------------------------------------------------
    # Multi-user lookups
    # ------------------------------------------------------------------

    async def lookup_many(self, usernames: Iterable[str]) -> dict[str, LocationEntry]:
        """Look several users up at once; hits keyed by lowercase username.

        Usernames are sent ``config.cloud_lookup_batch_size`` per request
        without waiting for the coalescing delay.
        """
        keys = list(dict.fromkeys(k for k in map(_clean_username, usernames) if k))
        if not keys:
            return {}
        self._state.stats.lookups += len(keys)
        results = await self._fetch(keys)
        return {key: result.data for key, result in results.items() if result.data is not None}

    async def _fetch(self, usernames: list[str]) -> dict[str, LookupResult]:
        """One request per chunk of *usernames*; every username gets a result."""
        results: dict[str, LookupResult] = {}
        attempted = False
        size = self._config.cloud_lookup_batch_size
        for start in range(0, len(usernames), size):
            chunk = usernames[start : start + size]
            if self._state.in_cooldown():
                results.update(dict.fromkeys(chunk, LookupResult.failure(ErrorKind.BACKOFF)))
                continue
            if not self._state.try_acquire_request():
                results.update(dict.fromkeys(chunk, LookupResult.failure(ErrorKind.RATE_LIMITED)))
                continue
            attempted = True
            results.update(await self._fetch_chunk(chunk))
        if attempted:
            await self._state.save_stats()
        return results

    async def _fetch_chunk(self, chunk: list[str]) -> dict[str, LookupResult]:
        try:
            response = await wait_for_ms(
                self._transport.request(
                    "GET",
                    f"{self._config.cloud_api_url}/lookup",
                    timeout_ms=self._config.cloud_lookup_timeout_ms,
                    headers=_ACCEPT_JSON,
                    params={"users": ",".join(chunk)},
                ),
                self._config.cloud_lookup_timeout_ms,
            )
            if not response.ok:
                raise XposedTransportError(f"HTTP {response.status}", status_code=response.status)
        except XposedTransportError as exc:
            _logger.debug("Cloud lookup of %d users failed: %s", len(chunk), exc)
            return self._fail(chunk, ErrorKind.NETWORK_ERROR, status_code=exc.status_code)

        try:
            body = response.json()
        except XposedTransportError:
            body = None
        if not isinstance(body, dict):
            _logger.debug("Cloud lookup of %d users returned an unexpected body", len(chunk))
            return self._fail(chunk, ErrorKind.PARSE_ERROR, status_code=response.status)

        self._state.record_success()
        stats = self._state.stats
        raw_results = body.get("results")
        found = {str(k).lower(): v for k, v in raw_results.items()} if isinstance(raw_results, dict) else {}

        results: dict[str, LookupResult] = {}
        for username in chunk:
            entry = self._parse_entry(username, found.get(username))
            if entry is None:
                stats.misses += 1
                results[username] = LookupResult.failure(ErrorKind.NOT_FOUND, status_code=response.status)
            else:
                stats.hits += 1
                results[username] = LookupResult.success(entry)
        return results

    def _parse_entry(self, username: str, info: Any) -> LocationEntry | None:
        if not isinstance(info, dict):
            return None
        location = sanitize_cloud_text(info.get("l"))
        if location is None:
            return None
        seconds = _epoch_seconds(info.get("t")) or self._state.clock() // 1000
        return LocationEntry(
            location=location,
            device=sanitize_cloud_text(info.get("d")) or "Unknown",
            is_accurate=info.get("a") is not False,
            timestamp=seconds * 1000,
            from_cloud=True,
            username=username,
        )

    def _fail(self, chunk: list[str], kind: ErrorKind, *, status_code: int | None) -> dict[str, LookupResult]:
        self._state.record_failure()
        self._state.stats.errors += 1
        return dict.fromkeys(chunk, LookupResult.failure(kind, status_code=status_code))

    # ------------------------------------------------------------------
    # Server stats / lifecycle
    # ------------------------------------------------------------------

    async def fetch_server_stats(self) -> ServerStats | None:
        """Aggregate server counters, or ``None`` when unavailable."""
        try:
            response = await wait_for_ms(
                self._transport.request(
                    "GET",
                    f"{self._config.cloud_api_url}/stats",
                    timeout_ms=self._config.cloud_stats_timeout_ms,
                    headers=_ACCEPT_JSON,
                ),
                self._config.cloud_stats_timeout_ms,
            )
            if not response.ok:
                raise XposedTransportError(f"HTTP {response.status}", status_code=response.status)
            body = response.json()
        except XposedTransportError as exc:
            _logger.debug("Failed to fetch cloud server stats: %s", exc)
            return None

        if not isinstance(body, dict):
            return None
        cleaned = {k: v for k, v in body.items() if v is not None and v != ""}
        try:
            return ServerStats.model_validate(cleaned)
        except ValidationError:
            _logger.debug("Unexpected cloud server stats payload", exc_info=True)
            return None

    async def aclose(self) -> None:
        """Send any waiting lookups now and wait for in-flight requests."""
        if self._batch_timer is not None:
            self._batch_timer.cancel()
        self._start_batch()
        if self._batch_tasks:
            await asyncio.gather(*self._batch_tasks, return_exceptions=True)
