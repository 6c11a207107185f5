"""Per-chapter content cache with a 24 hour lifetime."""
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from .config import CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

KEY_PREFIX = "chapter-"


def string_hash(s: str) -> int:
    """31-multiplier rolling hash folded to 32 bits. Not collision safe."""
    h = 0
    for ch in s:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h


def cache_key(url: str) -> str:
    return f"{KEY_PREFIX}{string_hash(url):08x}"


class MemoryStorage:
    def __init__(self):
        self.items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set(self, key: str, value: str) -> None:
        self.items[key] = value

    def delete(self, key: str) -> None:
        self.items.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self.items))


class DirectoryStorage:
    """One JSON file per key under root."""

    def __init__(self, root):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        try:
            return self._path(key).read_text("utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self) -> Iterator[str]:
        if not self.root.is_dir():
            return iter(())
        return iter(sorted(p.stem for p in self.root.glob(f"{KEY_PREFIX}*.json")))


class ChapterCache:
    def __init__(self, storage, ttl_seconds: float = CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _fresh(self, entry: Dict) -> bool:
        ts = entry.get("timestamp")
        return isinstance(ts, (int, float)) and self.clock() - ts < self.ttl_seconds

    def _load(self, key: str) -> Optional[Dict]:
        # unreadable or undecodable files count as a miss
        try:
            raw = self.storage.get(key)
        except (OSError, ValueError) as e:
            logger.warning("chapter cache entry %s unreadable: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
        except ValueError:
            return None
        return entry if isinstance(entry, dict) else None

    def get(self, url: str) -> Optional[Dict]:
        """The entry for url if younger than the TTL; stale entries are dropped."""
        key = cache_key(url)
        try:
            entry = self._load(key)
            if entry is None:
                return None
            if not self._fresh(entry) or not isinstance(entry.get("content"), str):
                self.storage.delete(key)
                return None
        except (OSError, ValueError) as e:
            logger.warning("chapter cache read failed for %s: %s", url, e)
            return None
        return entry

    def set(self, url: str, content: str, title: Optional[str] = None) -> None:
        entry = {"content": content, "title": title, "timestamp": self.clock()}
        try:
            self.storage.set(cache_key(url), json.dumps(entry, ensure_ascii=False))
        except Exception as e:
            logger.warning("chapter cache write failed for %s: %s", url, e)
            try:
                self.sweep_expired()
            except OSError as sweep_err:
                logger.warning("chapter cache sweep failed: %s", sweep_err)

    def sweep_expired(self) -> int:
        removed = 0
        for key in self.storage.keys():
            try:
                entry = self._load(key)
                if entry is None or not self._fresh(entry):
                    self.storage.delete(key)
                    removed += 1
            except (OSError, ValueError) as e:
                logger.warning("chapter cache sweep failed on %s: %s", key, e)
        if removed:
            logger.info("chapter cache: dropped %d expired entries", removed)
        return removed

    def clear(self) -> int:
        keys = list(self.storage.keys())
        for key in keys:
            self.storage.delete(key)
        return len(keys)
