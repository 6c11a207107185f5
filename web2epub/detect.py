"""Heuristic guessing of selectors for an unfamiliar site.

Nothing here is authoritative. The result is shown to the user, who merges
it into a config explicitly.
"""
import asyncio
import logging
import re
from typing import Optional

import soupsieve as sv
from bs4 import BeautifulSoup, Tag

from .errors import DetectionError
from .extraction import parse_html
from .models import DetectedSelectors

logger = logging.getLogger(__name__)

TITLE_SELECTORS = "h1, .post-title, .entry-title"
AUTHOR_SELECTORS = '.author, .author-name, a[rel="author"], .zuozhe'
COVER_SELECTORS = "img.novel-cover, .cover img, #cover img"
SYNOPSIS_SELECTORS = ".synopsis, .description, .entry-content p, .jianjie"
NEXT_LINK_SELECTORS = 'a[rel="next"], a.next-page, a.nav-next, a.next_page'
NOISY_ANCESTORS = "nav, footer, .sidebar, #comments"

MIN_TOC_LINKS = 5
MIN_CONTENT_TEXT = 200
MIN_CONTENT_PARAGRAPHS = 2

CONTENT_HINT = re.compile(r"content|chapter|entry|reading|text|neirong|zhangjie", re.I)
NOISE_HINT = re.compile(r"comment|meta|sidebar|nav|ad|footer", re.I)
NEXT_TEXT = re.compile(r"next|»|下一页|下一章", re.I)


def generate_selector(el: Tag) -> str:
    """Build a CSS selector that points back at el."""
    el_id = el.get("id")
    if el_id:
        return f"#{el_id}"
    selector = el.name.lower()
    classes = [c for c in (el.get("class") or []) if ":" not in c and not c[:1].isdigit()]
    if classes:
        return selector + "." + ".".join(classes)

    parent = el.parent
    if parent is None or isinstance(parent, BeautifulSoup):
        return selector
    parent_selector = generate_selector(parent)
    same_tag = parent.find_all(el.name, recursive=False)
    if len(same_tag) > 1:
        index = next(i for i, c in enumerate(same_tag, 1) if c is el)
        return f"{parent_selector} > {selector}:nth-of-type({index})"
    return f"{parent_selector} > {selector}"


def _first(doc: BeautifulSoup, primary: str, fallback: Optional[str] = None) -> Optional[Tag]:
    el = doc.select_one(primary)
    if el is None and fallback:
        el = doc.select_one(fallback)
    return el


def analyze_toc_page(doc: BeautifulSoup) -> DetectedSelectors:
    found = DetectedSelectors()

    el = _first(doc, TITLE_SELECTORS, 'meta[property="og:title"]')
    if el is not None:
        found.novel_title_selector = generate_selector(el)
    el = _first(doc, AUTHOR_SELECTORS)
    if el is not None:
        found.author_selector = generate_selector(el)
    el = _first(doc, COVER_SELECTORS, 'meta[property="og:image"]')
    if el is not None:
        found.cover_image_selector = generate_selector(el)
    el = _first(doc, SYNOPSIS_SELECTORS, 'meta[property="og:description"]')
    if el is not None:
        found.synopsis_selector = generate_selector(el)

    # the list holding the chapter links: most anchors wins, first seen on ties
    best, most = None, 0
    for container in doc.find_all(["ul", "ol", "div"]):
        n = len(container.find_all("a"))
        if n > most and n > MIN_TOC_LINKS:
            best, most = container, n
    if best is not None:
        found.toc_link_selector = f"{generate_selector(best)} a"
    return found


def _content_score(el: Tag) -> Optional[float]:
    text_len = len(el.get_text().strip())
    p_count = len(el.find_all("p"))
    if text_len < MIN_CONTENT_TEXT or p_count < MIN_CONTENT_PARAGRAPHS:
        return None
    link_count = len(el.find_all("a"))
    score = p_count * 25 + text_len / 100 - link_count * 5
    hint = f"{' '.join(el.get('class') or [])} {el.get('id') or ''}".lower()
    if CONTENT_HINT.search(hint):
        score *= 1.5
    if NOISE_HINT.search(hint):
        score *= 0.2
    return score


def _inside_noise(el: Tag) -> bool:
    return sv.closest(NOISY_ANCESTORS, el) is not None


def analyze_chapter_page(doc: BeautifulSoup) -> DetectedSelectors:
    found = DetectedSelectors()

    best, best_score = None, -1.0
    for el in doc.find_all(["div", "article", "section", "main"]):
        if _inside_noise(el):
            continue
        score = _content_score(el)
        if score is not None and score > best_score:
            best, best_score = el, score

    if best is not None:
        found.chapter_container_selector = generate_selector(best)
        title = best.select_one("h1, h2, h3") or doc.select_one("h1, h2, h3")
        if title is not None:
            found.chapter_title_selector = generate_selector(title)

    nxt = doc.select_one(NEXT_LINK_SELECTORS)
    if nxt is None:
        nxt = next((a for a in doc.find_all("a") if NEXT_TEXT.search(a.get_text())), None)
    if nxt is not None:
        found.next_page_link_selector = generate_selector(nxt)
    return found


async def auto_detect_selectors(fetcher, toc_url: str, first_chapter_url: str) -> DetectedSelectors:
    toc_html, chapter_html = await asyncio.gather(
        fetcher.fetch_html(toc_url),
        fetcher.fetch_html(first_chapter_url),
    )
    toc = analyze_toc_page(parse_html(toc_html))
    chapter = analyze_chapter_page(parse_html(chapter_html))

    detected = DetectedSelectors(**{**toc.as_dict(), **chapter.as_dict()})
    if not detected.chapter_container_selector:
        raise DetectionError("Could not reliably detect the main content container. Please set it manually.")
    if not detected.toc_link_selector:
        raise DetectionError("Could not reliably detect the chapter links container. Please set it manually.")
    logger.info("detected %d selectors", len(detected.as_dict()))
    return detected
