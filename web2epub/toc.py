"""Table-of-contents discovery for HTML pages and JSON chapter APIs."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from bs4 import BeautifulSoup

from .config import GenerationConfig
from .errors import TocError
from .extraction import parse_html, resolve_url, select_text
from .models import ChapterStub, NovelDetails

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Chapter"


@dataclass
class TocResult:
    details: NovelDetails
    chapters: List[ChapterStub]


def get_property_by_path(obj: Any, path: str) -> Any:
    """Walk a dot path like ``data.items.0.title`` through dicts and lists."""
    if not path:
        return None
    for key in path.split("."):
        if isinstance(obj, dict):
            obj = obj.get(key)
        elif isinstance(obj, list) and key.lstrip("-").isdigit():
            idx = int(key)
            obj = obj[idx] if -len(obj) <= idx < len(obj) else None
        else:
            return None
        if obj is None:
            return None
    return obj


def parse_novel_details(doc: BeautifulSoup, base_url: str, config: GenerationConfig) -> NovelDetails:
    details = NovelDetails()
    details.novel_title = select_text(doc, config.novel_title_selector) or None
    details.author = select_text(doc, config.author_selector) or None
    details.synopsis = select_text(doc, config.synopsis_selector) or None
    if config.cover_image_selector:
        el = doc.select_one(config.cover_image_selector)
        src = el.get("src") if el else None
        if src:
            details.cover_url = resolve_url(src, base_url)
    return details


def parse_toc_links(doc: BeautifulSoup, base_url: str, selector: str) -> List[Tuple[str, str]]:
    """(title, absolute url) pairs in document order, first title per url."""
    seen = {}
    for a in doc.select(selector):
        href = (a.get("href") or "").strip()
        if not href or href.lower().startswith("javascript:"):
            continue
        try:
            url = resolve_url(href, base_url)
        except ValueError:
            logger.warning("Skipping invalid URL found in TOC: href=%r base=%r", href, base_url)
            continue
        if url and url not in seen:
            seen[url] = a.get_text(strip=True) or UNTITLED
    return [(title, url) for url, title in seen.items()]


def finalize_chapter_list(entries: List[Tuple[str, str]]) -> List[ChapterStub]:
    """Dedupe by url (first wins) and number the survivors 1..N."""
    if not entries:
        raise TocError("No chapters found. Check your TOC URL and selectors/paths.")
    unique = {}
    for title, url in entries:
        if url not in unique:
            unique[url] = title
    return [
        ChapterStub(id=f"chapter-{i}", title=title, url=url, order=i)
        for i, (url, title) in enumerate(unique.items(), 1)
    ]


def _next_link(doc: BeautifulSoup, selector: str, page_url: str) -> Optional[str]:
    if not selector:
        return None
    el = doc.select_one(selector)
    href = el.get("href") if el else None
    if not href:
        return None
    return resolve_url(href, page_url)


async def _paginated_html(fetcher, first_doc: BeautifulSoup, config: GenerationConfig) -> List[Tuple[str, str]]:
    entries: List[Tuple[str, str]] = []
    seen = {config.toc_url}
    url, doc, page = config.toc_url, first_doc, 1
    while True:
        links = parse_toc_links(doc, url, config.toc_link_selector)
        print(f"[toc] page {page}: {len(links)} links")
        entries.extend(links)
        nxt = _next_link(doc, config.toc_next_page_selector, url)
        if not nxt or nxt in seen:
            break
        seen.add(nxt)
        await asyncio.sleep(config.request_delay_ms / 1000)
        url, page = nxt, page + 1
        doc = parse_html(await fetcher.fetch_html(url, config.timeout_ms))
    return entries


async def _json_api(fetcher, config: GenerationConfig) -> List[Tuple[str, str]]:
    entries: List[Tuple[str, str]] = []
    seen = {config.toc_url}
    url = config.toc_url
    while True:
        data = await fetcher.fetch_json(url, config.timeout_ms)
        items = get_property_by_path(data, config.json_chapter_list_path)
        if not isinstance(items, list):
            raise TocError(
                f'JSON chapter list path "{config.json_chapter_list_path}" did not resolve to an array.'
            )
        for item in items:
            title = get_property_by_path(item, config.json_chapter_title_path)
            part = get_property_by_path(item, config.json_chapter_url_path)
            if not isinstance(title, str) or not isinstance(part, str):
                logger.warning("Skipping chapter item due to missing title or url: %r", item)
                continue
            entries.append((title.strip(), resolve_url(part, url)))
        print(f"[toc] {url}: {len(items)} items")

        nxt = get_property_by_path(data, config.json_next_page_path) if config.json_next_page_path else None
        if not isinstance(nxt, str) or not nxt.strip():
            break
        nxt = resolve_url(nxt, url)
        if nxt in seen:
            break
        seen.add(nxt)
        await asyncio.sleep(config.request_delay_ms / 1000)
        url = nxt
    return entries


async def resolve_toc(fetcher, config: GenerationConfig) -> TocResult:
    """Fetch the TOC (every page of it) and return details plus numbered stubs."""
    if not config.toc_url:
        raise TocError("No TOC URL configured.")

    if config.data_source_type == "json":
        entries = await _json_api(fetcher, config)
        chapters = finalize_chapter_list(entries)
        logger.info("json toc: %d chapters", len(chapters))
        return TocResult(details=NovelDetails(), chapters=chapters)

    doc = parse_html(await fetcher.fetch_html(config.toc_url, config.timeout_ms))
    details = parse_novel_details(doc, config.toc_url, config)
    if config.paginated_toc:
        entries = await _paginated_html(fetcher, doc, config)
    else:
        entries = parse_toc_links(doc, config.toc_url, config.toc_link_selector)
        if not entries:
            raise TocError(
                f'No chapter links found using selector: "{config.toc_link_selector}". '
                "Check the selector or the URL."
            )
    chapters = finalize_chapter_list(entries)
    logger.info("html toc: %d chapters", len(chapters))
    return TocResult(details=details, chapters=chapters)
