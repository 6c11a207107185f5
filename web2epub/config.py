"""Run configuration and settings-file loading."""
import dataclasses
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

# --------- Defaults ---------
DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_UA,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
    "Accept-Language": "en-US,en;q=0.9",
}
DEFAULT_ELEMENTS_TO_REMOVE = (
    "script, style, iframe, nav, .nav, #nav, footer, .footer, #footer, "
    ".sidebar, #sidebar, .comments, #comments, .ad, .ads"
)
MAX_BACKOFF_MS = 30_000
CACHE_TTL_SECONDS = 24 * 60 * 60
CACHE_DIR_ENV = "WEB2EPUB_CACHE_DIR"

# camelCase keys of exported settings that do not map by plain case conversion
_KEY_ALIASES = {
    "requestDelay": "request_delay_ms",
    "retryDelay": "retry_delay_ms",
    "timeout": "timeout_ms",
    "timeoutMs": "timeout_ms",
    "enableCache": "enable_chapter_cache",
    "enableChapterCache": "enable_chapter_cache",
    "coverImageBase64": "cover_image_base64",
}


def _snake(key: str) -> str:
    if key in _KEY_ALIASES:
        return _KEY_ALIASES[key]
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


@dataclass(frozen=True)
class GenerationConfig:
    # network
    proxy_url: str = ""
    request_delay_ms: int = 200
    timeout_ms: int = 30_000
    concurrent_downloads: int = 4
    max_retries: int = 2
    retry_delay_ms: int = 500
    exponential_backoff: bool = False
    max_pages_per_chapter: int = 20
    enable_chapter_cache: bool = True

    # source
    toc_url: str = ""
    first_chapter_url: str = ""
    data_source_type: str = "html"

    # table of contents
    toc_link_selector: str = "a"
    paginated_toc: bool = False
    toc_next_page_selector: str = ""
    json_chapter_list_path: str = ""
    json_chapter_title_path: str = ""
    json_chapter_url_path: str = ""
    json_next_page_path: str = ""

    # chapter pages
    chapter_container_selector: str = "body"
    chapter_title_selector: str = ""
    next_page_link_selector: str = ""

    # novel details on the TOC page
    novel_title_selector: str = ""
    author_selector: str = ""
    synopsis_selector: str = ""
    cover_image_selector: str = ""

    # cleanup
    elements_to_remove_selector: str = DEFAULT_ELEMENTS_TO_REMOVE
    text_to_remove: Tuple[str, ...] = field(default_factory=tuple)

    # metadata
    novel_title: str = "Untitled"
    author: str = "Unknown"
    synopsis: str = ""
    publisher: str = ""
    genres: str = ""

    # cover
    cover_image_url: str = ""
    cover_image_base64: str = ""

    # output
    include_title_in_content: bool = True
    include_title_in_txt: bool = True

    def __post_init__(self):
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if f.type is str and value is None:
                object.__setattr__(self, f.name, "")
        phrases = self.text_to_remove
        if phrases is None:
            phrases = ()
        elif isinstance(phrases, str):
            # older exports stored the phrases comma-separated
            phrases = tuple(p.strip() for p in phrases.split(","))
        object.__setattr__(self, "text_to_remove", tuple(p for p in phrases if p))
        if self.data_source_type not in ("html", "json"):
            raise ValueError(f"data_source_type must be 'html' or 'json', got {self.data_source_type!r}")
        if self.concurrent_downloads < 1:
            object.__setattr__(self, "concurrent_downloads", 1)

    @property
    def genre_list(self) -> List[str]:
        return [g.strip() for g in self.genres.split(",") if g.strip()]

    def merged_with(self, **changes: Any) -> "GenerationConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = key if key in known else _snake(key)
            if name not in known:
                logger.warning("Ignoring unknown config key %r", key)
                continue
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_json_file(cls, path) -> "GenerationConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: settings file must contain a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        out = dataclasses.asdict(self)
        out["text_to_remove"] = list(self.text_to_remove)
        return out


def default_cache_dir() -> Path:
    env = os.environ.get(CACHE_DIR_ENV)
    if env:
        return Path(env)
    return Path.home() / ".cache" / "web2epub"
