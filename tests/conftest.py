import asyncio

import httpx
import pytest

from web2epub.config import GenerationConfig
from web2epub.fetcher import Fetcher


class FakeSite:
    """Serves canned pages to an httpx.MockTransport and records every hit.

    A page value may be a str (HTML), a dict/list (JSON), an httpx.Response,
    or a callable taking the request and returning any of those.
    """

    def __init__(self, pages=None, delay: float = 0.0):
        self.pages = dict(pages or {})
        self.delay = delay
        self.hits = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.hits.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        page = self.pages.get(url)
        if callable(page):
            page = page(request)
        if page is None:
            return httpx.Response(404, text="not found")
        if isinstance(page, httpx.Response):
            return page
        if isinstance(page, (dict, list)):
            return httpx.Response(200, json=page)
        return httpx.Response(200, text=page, headers={"Content-Type": "text/html; charset=utf-8"})

    def fetcher(self, proxy_url: str = "") -> Fetcher:
        return Fetcher(proxy_url, transport=httpx.MockTransport(self.handler))

    def count(self, url: str) -> int:
        return self.hits.count(url)


@pytest.fixture
def site():
    return FakeSite()


def fast_config(**kw) -> GenerationConfig:
    kw.setdefault("request_delay_ms", 0)
    kw.setdefault("retry_delay_ms", 0)
    return GenerationConfig(**kw)


def page(body: str, title: str = "page") -> str:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>"


def run(coro):
    return asyncio.run(coro)
