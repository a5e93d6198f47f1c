"""HTTP transport with per-request timeouts."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from pyxposed._redact import redact_for_log
from pyxposed.exceptions import XposedTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status, headers and body of a completed HTTP exchange.

    Header names are stored lower-cased.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises :class:`XposedTransportError` when the body is not JSON.
        """
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as exc:
            raise XposedTransportError(
                f"Invalid JSON body: {self.text[:200]}",
                status_code=self.status,
            ) from exc


class HttpTransport(Protocol):
    """Structural transport interface used by the lookup clients.

    Implementations return an :class:`HttpResponse` for every status code
    and raise :class:`XposedTransportError` for network failures and
    timeouts.  Tests pass small fakes implementing this method.
    """

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout_ms: int,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
    ) -> HttpResponse:
        ...


class AiohttpTransport:
    """:class:`HttpTransport` backed by an ``aiohttp.ClientSession``."""

    def __init__(self, http_session: aiohttp.ClientSession) -> None:
        self._http = http_session

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout_ms: int,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
    ) -> HttpResponse:
        _logger.debug("%s %s headers=%s", method, url, redact_for_log(dict(headers or {})))

        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)
        try:
            async with self._http.request(
                method,
                url,
                headers=dict(headers or {}),
                params=dict(params) if params else None,
                json=json_body,
                timeout=timeout,
            ) as resp:
                text = await resp.text()
                response_headers = {k.lower(): v for k, v in resp.headers.items()}
                status = resp.status
        except TimeoutError as exc:
            raise XposedTransportError(
                f"{method} {url} timed out after {timeout_ms} ms",
                url=url,
                timed_out=True,
            ) from exc
        except aiohttp.ClientError as exc:
            raise XposedTransportError(f"{method} {url} failed: {exc}", url=url) from exc

        _logger.debug("%s %s -> HTTP %d", method, url, status)
        return HttpResponse(status=status, headers=response_headers, text=text)


async def wait_for_ms(coro: Any, timeout_ms: int) -> Any:
    """Await *coro* with a millisecond timeout mapped onto the transport error."""
    try:
        return await asyncio.wait_for(coro, timeout_ms / 1000.0)
    except TimeoutError as exc:
        raise XposedTransportError(f"Timed out after {timeout_ms} ms", timed_out=True) from exc
