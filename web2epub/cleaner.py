"""Chapter HTML cleanup: unwanted elements, unwanted phrases, XHTML fixes."""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup

from .chapter import fetch_full_chapter_content
from .config import GenerationConfig
from .extraction import parse_html
from .models import ChapterStub

logger = logging.getLogger(__name__)

VOID_ELEMENTS = ("br", "hr", "img", "input", "link", "meta")
_VOID_RX = [(tag, re.compile(rf"<{tag}\b([^>]*?)(?<!/)>", re.I)) for tag in VOID_ELEMENTS]


@dataclass
class CleanedContent:
    content: str
    title: Optional[str] = None


def remove_phrases(html: str, phrases: Iterable[str]) -> str:
    """Drop every literal phrase, repeating until nothing changes.

    A removal can splice text into a new occurrence ("abcabc" style), so
    one pass is not always enough for the result to be stable.
    """
    patterns = [re.compile(re.escape(p)) for p in phrases if p]
    if not patterns:
        return html
    while True:
        before = html
        for rx in patterns:
            html = rx.sub("", html)
        if html == before:
            return html


def self_close_void_elements(html: str) -> str:
    for tag, rx in _VOID_RX:
        html = rx.sub(rf"<{tag}\1 />", html)
    return html


def clean_chapter_content(html: str, first_page_doc: Optional[BeautifulSoup],
                          config: GenerationConfig) -> CleanedContent:
    title = None
    if config.chapter_title_selector and first_page_doc is not None:
        el = first_page_doc.select_one(config.chapter_title_selector)
        if el is not None:
            title = el.get_text(strip=True) or None

    frag = parse_html(html)
    if config.elements_to_remove_selector:
        for el in frag.select(config.elements_to_remove_selector):
            el.decompose()
    out = frag.decode_contents()

    if config.text_to_remove:
        # reparse so a phrase that spanned markup does not leave broken tags behind
        out = parse_html(remove_phrases(out, config.text_to_remove)).decode_contents()

    out = out.replace("\xa0", "&#160;").replace("&nbsp;", "&#160;")
    out = self_close_void_elements(out)
    return CleanedContent(content=out, title=title)


async def fetch_and_clean_chapter(fetcher, stub: ChapterStub, config: GenerationConfig,
                                  all_chapters: Optional[List[ChapterStub]] = None) -> CleanedContent:
    """Resolve and clean a single chapter, e.g. for a preview."""
    pages = await fetch_full_chapter_content(fetcher, stub.url, config, all_chapters)
    cleaned = clean_chapter_content(pages.content_html, pages.first_page_doc, config)
    if not cleaned.title:
        cleaned.title = stub.title
    return cleaned
