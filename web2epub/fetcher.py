"""Async page fetching through an optional URL-rewriting proxy."""
import asyncio
import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional, Tuple

import httpx

from .config import DEFAULT_HEADERS
from .errors import HttpError, ParseError
from .proxy import build_proxy_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After as seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class Fetcher:
    """Owns one httpx.AsyncClient and the map of in-flight requests.

    Two callers asking for the same fetch URL while the first request is
    still running share that request. The entry goes away as soon as the
    request settles, so nothing is cached beyond that.
    """

    def __init__(self, proxy_url: str = "", transport: Optional[httpx.AsyncBaseTransport] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.proxy_url = proxy_url or ""
        self.client = httpx.AsyncClient(
            headers=headers or DEFAULT_HEADERS,
            follow_redirects=True,
            transport=transport,
        )
        self._in_flight: Dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for task in list(self._in_flight.values()):
            task.cancel()
        self._in_flight.clear()
        await self.client.aclose()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # --------- shared request ---------
    async def _get(self, fetch_url: str, target_url: str, timeout_ms: int) -> httpx.Response:
        seconds = timeout_ms / 1000
        try:
            return await self.client.get(fetch_url, timeout=seconds)
        except httpx.TimeoutException as e:
            raise HttpError(
                f"Request to {target_url} timed out after {seconds:g} seconds.",
                timed_out=True, url=target_url,
            ) from e
        except httpx.HTTPError as e:
            logger.debug("transport error for %s: %r", fetch_url, e)
            raise HttpError(self._failure_message(target_url, 0), status=0, url=target_url) from e

    def _request(self, target_url: str, timeout_ms: int) -> "asyncio.Task":
        fetch_url = build_proxy_url(self.proxy_url, target_url)
        task = self._in_flight.get(fetch_url)
        if task is not None:
            logger.debug("joining in-flight request %s", fetch_url)
            return task
        task = asyncio.ensure_future(self._get(fetch_url, target_url, timeout_ms))
        self._in_flight[fetch_url] = task

        def settled(t: "asyncio.Task") -> None:
            if self._in_flight.get(fetch_url) is t:
                del self._in_flight[fetch_url]
            # mark the outcome retrieved when every caller has gone away
            if not t.cancelled():
                t.exception()

        task.add_done_callback(settled)
        return task

    def _failure_message(self, target_url: str, status: int) -> str:
        msg = f"Failed to fetch {target_url}. Status: {status}."
        if self.proxy_url:
            msg += " The server may be blocking the proxy, or the URL is incorrect. Try a different proxy."
        else:
            msg += (" This is likely a CORS issue or the site is blocking direct requests."
                    " Try configuring a proxy.")
        return msg

    async def _response(self, target_url: str, timeout_ms: int) -> httpx.Response:
        # shield: a cancelled caller must not cancel the request for the others
        return await asyncio.shield(self._request(target_url, timeout_ms))

    def _raise_for_status(self, resp: httpx.Response, target_url: str, message: str) -> None:
        if resp.is_success:
            return
        raise HttpError(
            message,
            status=resp.status_code,
            retry_after=parse_retry_after(resp.headers.get("Retry-After")),
            url=target_url,
        )

    # --------- public API ---------
    async def fetch_html(self, target_url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> str:
        resp = await self._response(target_url, timeout_ms)
        self._raise_for_status(resp, target_url, self._failure_message(target_url, resp.status_code))
        return resp.text

    async def fetch_json(self, target_url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Any:
        try:
            resp = await self._response(target_url, timeout_ms)
        except HttpError as e:
            if e.timed_out:
                raise
            raise HttpError(
                f"Failed to fetch JSON from {target_url}. Status: {e.status}. Check the API URL and proxy settings.",
                status=e.status, url=target_url,
            ) from e
        self._raise_for_status(
            resp, target_url,
            f"Failed to fetch JSON from {target_url}. Status: {resp.status_code}. "
            "Check the API URL and proxy settings.",
        )
        try:
            return json.loads(resp.text)
        except ValueError as e:
            raise ParseError(f"Could not parse JSON from {target_url}: {e}") from e

    async def fetch_bytes(self, target_url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Tuple[bytes, str]:
        resp = await self._response(target_url, timeout_ms)
        self._raise_for_status(resp, target_url, self._failure_message(target_url, resp.status_code))
        return resp.content, resp.headers.get("Content-Type", "")
