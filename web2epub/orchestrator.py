"""Concurrent chapter downloading with retries, caching and progress events."""
import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterator, Iterable, List, Optional

from .cache import ChapterCache
from .cleaner import fetch_and_clean_chapter
from .config import MAX_BACKOFF_MS, GenerationConfig
from .errors import ErrorKind, FetchError, classify_error
from .models import Chapter, ChapterStatus, ChapterStub, ChapterUpdate

logger = logging.getLogger(__name__)

NO_RETRY = (ErrorKind.NOT_FOUND, ErrorKind.PARSE_ERROR)


def retry_delay(error: FetchError, attempt: int, config: GenerationConfig) -> Optional[float]:
    """Milliseconds to wait before retry number `attempt` (1-based), or None for no retry."""
    if error.kind in NO_RETRY:
        return None
    if error.kind == ErrorKind.RATE_LIMIT and error.retry_after is not None:
        return error.retry_after * 1000
    if config.exponential_backoff:
        return min(config.retry_delay_ms * 2 ** (attempt - 1), MAX_BACKOFF_MS)
    return config.retry_delay_ms


def progress_percentage(chapters: Iterable[Chapter]) -> float:
    chapters = list(chapters)
    if not chapters:
        return 0.0
    done = sum(1 for c in chapters if c.status in (ChapterStatus.SUCCESS, ChapterStatus.ERROR))
    return done / len(chapters) * 100


def failed_subset(chapters: Iterable[Chapter]) -> List[ChapterStub]:
    """Stubs of the failed chapters, ready to hand back to run()."""
    return [
        ChapterStub(id=c.id, title=c.title, url=c.url, order=c.order)
        for c in chapters if c.status == ChapterStatus.ERROR
    ]


class BatchDownloader:
    def __init__(self, fetcher, config: GenerationConfig, cache: Optional[ChapterCache] = None):
        self.fetcher = fetcher
        self.config = config
        self.cache = cache if config.enable_chapter_cache else None
        self._cancelled = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    def cancel(self) -> None:
        """Stop starting chapters and abandon the ones in flight."""
        self._cancelled.set()
        for t in self._tasks:
            if not t.done():
                t.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _cached(self, url: str) -> Optional[dict]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(url)
        except Exception as e:
            logger.warning("chapter cache lookup failed for %s, fetching instead: %s", url, e)
            return None

    def _remember(self, url: str, content: str, title: Optional[str]) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(url, content, title)
        except Exception as e:
            logger.warning("chapter cache write skipped for %s: %s", url, e)

    async def _download(self, stub: ChapterStub, all_chapters: List[ChapterStub],
                        sem: asyncio.Semaphore, events: asyncio.Queue) -> None:
        chapter = Chapter.from_stub(stub)

        def emit(status: ChapterStatus) -> None:
            chapter.status = status
            events.put_nowait(ChapterUpdate(chapter=replace(chapter), status=status))

        async with sem:
            if self.cancelled:
                return
            emit(ChapterStatus.DOWNLOADING)
            await asyncio.sleep(self.config.request_delay_ms / 1000)

            hit = self._cached(stub.url)
            if hit is not None:
                logger.debug("cache hit %s", stub.url)
                chapter.content = hit["content"]
                chapter.title = hit.get("title") or chapter.title
                emit(ChapterStatus.SUCCESS)
                return

            attempt = 0
            while True:
                attempt += 1
                chapter.attempt = attempt
                try:
                    cleaned = await fetch_and_clean_chapter(self.fetcher, stub, self.config, all_chapters)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    err = classify_error(e)
                    chapter.error, chapter.error_kind = err.message, err.kind.value
                    delay = retry_delay(err, attempt, self.config) if attempt <= self.config.max_retries else None
                    if delay is None:
                        logger.warning("%s failed (%s): %s", stub.url, err.kind.value, err.message)
                        emit(ChapterStatus.ERROR)
                        return
                    logger.info("%s attempt %d failed (%s), retrying in %dms",
                                stub.url, attempt, err.kind.value, delay)
                    await asyncio.sleep(delay / 1000)
                    emit(ChapterStatus.DOWNLOADING)
                    continue

                chapter.content = cleaned.content
                chapter.title = cleaned.title or chapter.title
                chapter.error = chapter.error_kind = None
                self._remember(stub.url, cleaned.content, cleaned.title)
                emit(ChapterStatus.SUCCESS)
                return

    async def run(self, selected: List[ChapterStub],
                  all_chapters: Optional[List[ChapterStub]] = None) -> AsyncIterator[ChapterUpdate]:
        """Download every selected chapter, yielding one update per status change.

        A chapter that fails ends in an ERROR update; it never stops the batch.
        Closing the generator early cancels the remaining work.
        """
        all_chapters = list(all_chapters) if all_chapters is not None else list(selected)
        sem = asyncio.Semaphore(self.config.concurrent_downloads)
        events: asyncio.Queue = asyncio.Queue()
        self._tasks = [
            asyncio.ensure_future(self._download(stub, all_chapters, sem, events))
            for stub in selected
        ]
        pending = set(self._tasks)
        try:
            while pending or not events.empty():
                if not events.empty():
                    yield events.get_nowait()
                    continue
                getter = asyncio.ensure_future(events.get())
                done, _ = await asyncio.wait(pending | {getter}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                else:
                    getter.cancel()
                pending = {t for t in pending if not t.done()}
                if self.cancelled:
                    break
            while not events.empty():
                yield events.get_nowait()
        finally:
            self.cancel()
            for t in self._tasks:
                if t.done() and not t.cancelled() and t.exception() is not None:
                    logger.error("chapter task crashed: %r", t.exception())
