"""Fetching one chapter across all of its pages."""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Set

from bs4 import BeautifulSoup

from .config import GenerationConfig
from .errors import ParseError
from .extraction import inner_html, parse_html, resolve_url
from .models import ChapterStub

logger = logging.getLogger(__name__)

FALLBACK_NEXT_SELECTORS = 'a[rel="next"], a.next-page, a.next_page, a.nav-next, a.next'
NEXT_PAGE_TEXT = re.compile(r"^\s*(next(\s+page)?|下一页|›|»|>>?)\s*[›»>]*\s*$", re.I)
CHAPTER_WORDS = re.compile(r"chapter|章|episode", re.I)


@dataclass
class ChapterPages:
    content_html: str
    first_page_doc: BeautifulSoup
    page_count: int


def find_next_page(doc: BeautifulSoup, page_url: str, selector: str = "") -> Optional[str]:
    """Absolute URL of the next page within the chapter, if any.

    The configured selector is used when set. Otherwise common next-page
    markup is tried, skipping links whose text talks about chapters.
    """
    if selector:
        el = doc.select_one(selector)
        href = el.get("href") if el else None
        return resolve_url(href, page_url) if href else None

    for a in doc.select(FALLBACK_NEXT_SELECTORS):
        text = a.get_text(" ", strip=True)
        if a.get("href") and not CHAPTER_WORDS.search(text):
            return resolve_url(a["href"], page_url)
    for a in doc.find_all("a", href=True):
        text = a.get_text(" ", strip=True)
        if NEXT_PAGE_TEXT.match(text) and not CHAPTER_WORDS.search(text):
            return resolve_url(a["href"], page_url)
    return None


async def fetch_full_chapter_content(fetcher, url: str, config: GenerationConfig,
                                     all_chapters: Optional[List[ChapterStub]] = None) -> ChapterPages:
    toc_urls: Set[str] = {c.url for c in (all_chapters or [])}
    visited = {url}
    parts: List[str] = []
    first_doc: Optional[BeautifulSoup] = None
    page_url, pages = url, 0

    while True:
        doc = parse_html(await fetcher.fetch_html(page_url, config.timeout_ms))
        pages += 1
        if first_doc is None and inner_html(doc.body or doc).strip():
            first_doc = doc
        if config.chapter_container_selector:
            container = doc.select_one(config.chapter_container_selector)
        else:
            container = doc.body or doc
        if container is not None:
            parts.append(inner_html(container))

        if pages >= config.max_pages_per_chapter:
            logger.warning("%s: stopped after %d pages", url, pages)
            break
        nxt = find_next_page(doc, page_url, config.next_page_link_selector)
        if not nxt or nxt in visited:
            break
        if nxt in toc_urls and nxt != url:
            # the "next" link points at another chapter of the book
            break
        visited.add(nxt)
        await asyncio.sleep(config.request_delay_ms / 1000)
        page_url = nxt

    if first_doc is None:
        raise ParseError(f"Could not fetch or parse the first page of chapter at {url}")
    content = "".join(parts)
    if not content.strip():
        raise ParseError(
            f'No content found for chapter at {url} using container selector '
            f'"{config.chapter_container_selector}".'
        )
    logger.debug("%s: %d page(s), %d chars", url, pages, len(content))
    return ChapterPages(content_html=content, first_page_doc=first_doc, page_count=pages)
