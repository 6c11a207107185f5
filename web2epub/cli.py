import argparse
import asyncio
import json
import logging
import re
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from soupsieve import SelectorSyntaxError

from .cache import ChapterCache, DirectoryStorage
from .cleaner import fetch_and_clean_chapter
from .config import GenerationConfig, default_cache_dir
from .cover import resolve_cover
from .detect import auto_detect_selectors
from .errors import Web2EpubError
from .extraction import SelectorTest, test_selector
from .fetcher import Fetcher
from .models import (Chapter, ChapterStatus, ChapterStub, NovelDetails, reorder, select_range,
                     transform_titles)
from .orchestrator import BatchDownloader, failed_subset, progress_percentage
from .packaging import build_handoff, html_to_text, output_stem, write_epub, write_txt
from .toc import resolve_toc

logger = logging.getLogger(__name__)


def parse_range(value: str) -> Tuple[int, int]:
    try:
        if "-" in value:
            a, b = value.split("-", 1)
            return int(a), int(b)
        n = int(value)
        return n, n
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected N or A-B, got {value!r}")


def parse_ids(value: str) -> List[str]:
    ids = [v.strip() for v in value.split(",") if v.strip()]
    if not ids:
        raise argparse.ArgumentTypeError("expected chapter ids like chapter-3,chapter-1")
    return ids


def load_config(args) -> GenerationConfig:
    try:
        cfg = GenerationConfig.from_json_file(args.config)
    except (OSError, ValueError) as e:
        raise Web2EpubError(f"could not load settings from {args.config}: {e}") from e
    logger.debug("loaded settings from %s", args.config)
    if getattr(args, "proxy", None) is not None:
        cfg = cfg.merged_with(proxy_url=args.proxy)
    return cfg


def apply_details(cfg: GenerationConfig, details: NovelDetails) -> GenerationConfig:
    """Fill metadata the settings left at their defaults from what the TOC page shows."""
    defaults = GenerationConfig()
    changes = {}
    if details.novel_title and cfg.novel_title == defaults.novel_title:
        changes["novel_title"] = details.novel_title
    if details.author and cfg.author == defaults.author:
        changes["author"] = details.author
    if details.synopsis and not cfg.synopsis:
        changes["synopsis"] = details.synopsis
    if details.cover_url and not cfg.cover_image_url and not cfg.cover_image_base64:
        changes["cover_image_url"] = details.cover_url
    return cfg.merged_with(**changes) if changes else cfg


# --------- Commands ---------
async def cmd_detect(args) -> int:
    async with Fetcher(args.proxy or "") as fetcher:
        found = await auto_detect_selectors(fetcher, args.toc_url, args.chapter_url)
    print(json.dumps(found.as_dict(), ensure_ascii=False, indent=2))
    return 0


async def cmd_test_selector(args) -> int:
    test = SelectorTest(url=args.url, selector=args.selector, return_type=args.type,
                        attribute=args.attr or "", multi=args.multi)
    async with Fetcher(args.proxy or "") as fetcher:
        result = await test_selector(fetcher, test)
    if isinstance(result, list):
        print(f"[ok] {len(result)} matches")
        for v in result:
            print(v)
    else:
        print(result)
    return 0


async def cmd_toc(args) -> int:
    cfg = load_config(args)
    async with Fetcher(cfg.proxy_url) as fetcher:
        toc = await resolve_toc(fetcher, cfg)
    details = {k: v for k, v in asdict(toc.details).items() if v}
    if details:
        print(json.dumps(details, ensure_ascii=False, indent=2))
    for s in toc.chapters:
        print(f"{s.order:04d}  {s.title}  {s.url}")
    print(f"[toc] {len(toc.chapters)} chapters")
    return 0


async def cmd_preview(args) -> int:
    cfg = load_config(args)
    async with Fetcher(cfg.proxy_url) as fetcher:
        toc = await resolve_toc(fetcher, cfg)
        matches = [s for s in toc.chapters if s.order == args.chapter]
        if not matches:
            raise Web2EpubError(f"no chapter {args.chapter}; the TOC has {len(toc.chapters)}")
        cleaned = await fetch_and_clean_chapter(fetcher, matches[0], cfg, toc.chapters)
    print(f"# {cleaned.title}\n")
    print(html_to_text(cleaned.content) if args.text else cleaned.content)
    return 0


def _install_interrupt(downloader: BatchDownloader) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, downloader.cancel)
    except (NotImplementedError, RuntimeError):
        # no loop signal handlers here (Windows); Ctrl-C aborts the process instead
        return False
    return True


def load_statuses(book_dir: Path) -> List[Chapter]:
    """Chapters recorded by an earlier build of the same book."""
    path = book_dir / "chapters.jsonl"
    try:
        lines = path.read_text("utf-8").splitlines()
        return [Chapter.from_record(json.loads(line)) for line in lines if line.strip()]
    except (OSError, ValueError, TypeError) as e:
        raise Web2EpubError(f"could not read chapter statuses from {path}: {e}") from e


def shape_chapters(stubs: List[ChapterStub], args) -> List[ChapterStub]:
    if args.title_pattern:
        try:
            stubs = transform_titles(stubs, args.title_pattern, args.title_replace)
        except re.error as e:
            raise Web2EpubError(f"bad --title-pattern {args.title_pattern!r}: {e}") from e
    if args.order:
        stubs = reorder(stubs, args.order)
    if args.chapters:
        stubs = select_range(stubs, *args.chapters)
    return stubs


async def cmd_build(args) -> int:
    cfg = load_config(args)
    if args.no_cache:
        cfg = cfg.merged_with(enable_chapter_cache=False)
    out_dir = Path(args.out)

    async with Fetcher(cfg.proxy_url) as fetcher:
        print(f"[toc] {cfg.toc_url}")
        toc = await resolve_toc(fetcher, cfg)
        cfg = apply_details(cfg, toc.details)
        book_dir = out_dir / output_stem(cfg.novel_title)

        if args.retry_failed:
            # earlier successes are kept as recorded, only the failures go out again
            previous = load_statuses(book_dir)
            results: Dict[str, Chapter] = {c.id: c for c in previous}
            selected = failed_subset(previous)
            print(f"[ok] {len(selected)} of {len(previous)} chapters failed last time")
            if not selected:
                print(f"[ok] nothing to retry in {book_dir}")
                return 0
        else:
            stubs = shape_chapters(toc.chapters, args)
            selected = [s for s in stubs if s.selected]
            print(f"[ok] {len(toc.chapters)} chapters in TOC, {len(selected)} selected")
            if not selected:
                raise Web2EpubError("no chapters selected")
            results = {s.id: Chapter.from_stub(s) for s in selected}

        cache = None
        if cfg.enable_chapter_cache:
            cache = ChapterCache(DirectoryStorage(args.cache_dir or default_cache_dir()))
        downloader = BatchDownloader(fetcher, cfg, cache)
        hooked = _install_interrupt(downloader)

        try:
            async for update in downloader.run(selected, toc.chapters):
                ch = update.chapter
                results[ch.id] = ch
                pct = progress_percentage(results.values())
                if update.status == ChapterStatus.DOWNLOADING:
                    retry = f" (retry {ch.attempt}: {ch.error})" if ch.error else ""
                    print(f"[dl] {ch.order:03d} {ch.title}{retry}")
                elif update.status == ChapterStatus.SUCCESS:
                    print(f"[ok] {ch.order:03d} {ch.title}  {pct:.0f}%")
                else:
                    print(f"[warn] {ch.order:03d} {ch.title}: {ch.error_kind}: {ch.error}  {pct:.0f}%")
        finally:
            if hooked:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

        if downloader.cancelled:
            print("\n[warn] cancelled; keeping finished chapters")
        cover = await resolve_cover(fetcher, cfg)

    chapters = sorted(results.values(), key=lambda c: c.order)
    book_dir.mkdir(parents=True, exist_ok=True)

    # metadata + chapter statuses regardless of outcome; content stays so --retry-failed can rebuild
    meta = {k: v for k, v in cfg.to_dict().items() if k in (
        "novel_title", "author", "synopsis", "publisher", "genres", "toc_url", "cover_image_url")}
    (book_dir / "metadata.json").write_text(json.dumps(meta, ensure_ascii=False, indent=2), "utf-8")
    with (book_dir / "chapters.jsonl").open("w", encoding="utf-8") as f:
        for ch in chapters:
            f.write(json.dumps(ch.to_record(), ensure_ascii=False) + "\n")

    handoff = build_handoff(chapters, cfg, cover)
    failed = sum(1 for c in chapters if c.status == ChapterStatus.ERROR)
    if not handoff.chapters:
        raise Web2EpubError("no chapters were downloaded successfully; nothing to package")
    if args.format in ("epub", "both"):
        path = write_epub(handoff, book_dir, cfg.include_title_in_content)
        print(f"[success] Wrote EPUB: {path}  |  Chapters: {len(handoff.chapters)}  |  Failed: {failed}")
    if args.format in ("txt", "both"):
        path = write_txt(handoff, book_dir, cfg.include_title_in_txt)
        print(f"[success] Wrote TXT: {path}  |  Chapters: {len(handoff.chapters)}  |  Failed: {failed}")
    return 130 if downloader.cancelled else 0


async def cmd_clear_cache(args) -> int:
    root = Path(args.cache_dir) if args.cache_dir else default_cache_dir()
    n = ChapterCache(DirectoryStorage(root)).clear()
    print(f"[ok] removed {n} cached chapters from {root}")
    return 0


# --------- Main ---------
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="web2epub", description="Web novel → EPUB/TXT.")
    ap.add_argument("--debug", "-v", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("detect", help="Guess selectors from a TOC page and a chapter page")
    p.add_argument("toc_url")
    p.add_argument("chapter_url")
    p.add_argument("--proxy", default=None, help="Proxy prefix, e.g. https://proxy.example/?url=")
    p.set_defaults(func=cmd_detect)

    p = sub.add_parser("test-selector", help="Run one CSS selector against a page")
    p.add_argument("url")
    p.add_argument("selector")
    p.add_argument("--type", choices=("text", "html", "attribute"), default="text")
    p.add_argument("--attr", help="Attribute name for --type attribute")
    p.add_argument("--multi", action="store_true", help="Return every match")
    p.add_argument("--proxy", default=None)
    p.set_defaults(func=cmd_test_selector)

    for name, func, helptext in (("toc", cmd_toc, "List the chapters the TOC settings find"),
                                 ("preview", cmd_preview, "Download and clean a single chapter"),
                                 ("build", cmd_build, "Download chapters and write the book")):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("config", help="JSON settings file")
        p.add_argument("--proxy", default=None, help="Override the proxy from the settings file")
        p.set_defaults(func=func)
        if name == "preview":
            p.add_argument("--chapter", type=int, default=1, help="Chapter number (default: 1)")
            p.add_argument("--text", action="store_true", help="Print plain text instead of HTML")
        if name == "build":
            p.add_argument("--chapters", type=parse_range, default=None, help="Range like 1-50")
            p.add_argument("--format", choices=("epub", "txt", "both"), default="epub")
            p.add_argument("--out", default="output", help="Output folder (default: output/)")
            p.add_argument("--no-cache", action="store_true", help="Skip the chapter cache")
            p.add_argument("--cache-dir", default=None, help="Chapter cache folder")
            p.add_argument("--title-pattern", default=None, help="Regex applied to every chapter title")
            p.add_argument("--title-replace", default="", help="Replacement for --title-pattern (default: empty)")
            p.add_argument("--order", type=parse_ids, default=None,
                           help="Chapter ids to put first, comma separated, e.g. chapter-3,chapter-1")
            p.add_argument("--retry-failed", action="store_true",
                           help="Download again only the chapters chapters.jsonl marks as failed")

    p = sub.add_parser("clear-cache", help="Delete every cached chapter")
    p.add_argument("--cache-dir", default=None)
    p.set_defaults(func=cmd_clear_cache)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    if not args.debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
    try:
        return asyncio.run(args.func(args))
    except (Web2EpubError, SelectorSyntaxError) as e:
        print(f"[error] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n[warn] aborted by user")
        return 130


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
