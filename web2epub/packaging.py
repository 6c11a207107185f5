"""Turning downloaded chapters into an EPUB or a plain text file."""
import logging
import re
import uuid
from html import escape as hesc
from pathlib import Path
from typing import Iterable, Optional

from bs4 import NavigableString
from ebooklib import epub
from slugify import slugify

from .config import GenerationConfig
from .extraction import parse_html
from .models import BuildHandoff, Chapter, ChapterStatus, CoverImage, PackagedChapter

logger = logging.getLogger(__name__)

STYLESHEET = "body { font-family: serif; line-height: 1.5; } h1, h2, h3 { margin-top: 1.5em; } img { max-width: 100%; height: auto; }"
BLOCK_TAGS = ["p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "pre", "section", "article"]


def build_handoff(chapters: Iterable[Chapter], config: GenerationConfig,
                  cover: Optional[CoverImage] = None) -> BuildHandoff:
    done = sorted((c for c in chapters if c.status == ChapterStatus.SUCCESS), key=lambda c: c.order)
    return BuildHandoff(
        title=config.novel_title or "Untitled",
        author=config.author or "Unknown",
        chapters=[PackagedChapter(id=c.id, title=c.title, content=c.content, order=c.order) for c in done],
        synopsis=config.synopsis,
        publisher=config.publisher,
        genres=config.genre_list,
        cover=cover,
    )


def output_stem(title: str) -> str:
    return slugify(title or "") or "novel"


# --------- EPUB ---------
def write_epub(handoff: BuildHandoff, out_dir: Path, include_title_in_content: bool = True) -> Path:
    book = epub.EpubBook()
    book.set_identifier(f"urn:uuid:{uuid.uuid4()}")
    book.set_title(handoff.title)
    book.set_language("en")
    book.add_author(handoff.author)
    if handoff.synopsis:
        book.add_metadata("DC", "description", handoff.synopsis)
    if handoff.publisher:
        book.add_metadata("DC", "publisher", handoff.publisher)
    for genre in handoff.genres:
        book.add_metadata("DC", "subject", genre)
    if handoff.cover is not None:
        book.set_cover(f"cover.{handoff.cover.extension}", handoff.cover.data)

    css = epub.EpubItem(uid="style", file_name="style.css", media_type="text/css",
                        content=STYLESHEET.encode("utf-8"))
    book.add_item(css)

    spine = ["nav"]
    toc = []
    for ch in handoff.chapters:
        title = (ch.title or f"Chapter {ch.order}").strip()
        item = epub.EpubHtml(title=title, file_name=f"{ch.id}.xhtml", lang="en")
        heading = f"<h1>{hesc(title)}</h1>\n" if include_title_in_content else ""
        item.content = f"{heading}{ch.content}"
        item.add_item(css)
        book.add_item(item)
        spine.append(item)
        toc.append(epub.Link(f"{ch.id}.xhtml", title, ch.id))

    book.toc = tuple(toc)
    book.spine = spine
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())

    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{output_stem(handoff.title)}.epub"
    epub.write_epub(str(out_path), book, {})
    logger.info("wrote %s (%d chapters)", out_path, len(handoff.chapters))
    return out_path


# --------- TXT ---------
def html_to_text(html: str) -> str:
    soup = parse_html(html)
    for br in soup.find_all("br"):
        br.replace_with(NavigableString("\n"))
    for block in soup.find_all(BLOCK_TAGS):
        block.insert_after(NavigableString("\n\n"))
    text = soup.get_text().replace("\xa0", " ")
    lines = [line.rstrip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def render_txt(handoff: BuildHandoff, include_title: bool = True) -> str:
    parts = []
    for ch in handoff.chapters:
        head = f"{ch.title}\n\n" if include_title else ""
        parts.append(f"{head}{html_to_text(ch.content)}\n\n---\n\n")
    return "".join(parts)


def write_txt(handoff: BuildHandoff, out_dir: Path, include_title: bool = True) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{output_stem(handoff.title)}.txt"
    out_path.write_text(render_txt(handoff, include_title), "utf-8")
    logger.info("wrote %s", out_path)
    return out_path
