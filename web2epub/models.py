import base64
import re
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional


class ChapterStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ChapterStub:
    id: str
    title: str
    url: str
    order: int
    selected: bool = True


@dataclass
class Chapter:
    id: str
    title: str
    url: str
    order: int
    content: str = ""
    status: ChapterStatus = ChapterStatus.PENDING
    error: Optional[str] = None
    error_kind: Optional[str] = None
    attempt: int = 0

    @classmethod
    def from_stub(cls, stub: ChapterStub) -> "Chapter":
        return cls(id=stub.id, title=stub.title, url=stub.url, order=stub.order)

    def to_record(self) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_record(cls, data: Dict) -> "Chapter":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["status"] = ChapterStatus(known.get("status") or ChapterStatus.PENDING.value)
        return cls(**known)


@dataclass
class ChapterUpdate:
    """One status transition of one chapter during a batch run."""
    chapter: Chapter
    status: ChapterStatus

    @property
    def done(self) -> bool:
        return self.status in (ChapterStatus.SUCCESS, ChapterStatus.ERROR)


@dataclass
class NovelDetails:
    novel_title: Optional[str] = None
    author: Optional[str] = None
    synopsis: Optional[str] = None
    cover_url: Optional[str] = None


@dataclass
class DetectedSelectors:
    """Guesses from the auto-detector. Review before merging into a config."""
    novel_title_selector: Optional[str] = None
    author_selector: Optional[str] = None
    cover_image_selector: Optional[str] = None
    synopsis_selector: Optional[str] = None
    toc_link_selector: Optional[str] = None
    chapter_container_selector: Optional[str] = None
    chapter_title_selector: Optional[str] = None
    next_page_link_selector: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}


@dataclass
class CoverImage:
    data: bytes
    media_type: str

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def extension(self) -> str:
        sub = self.media_type.split("/")[-1].split(";")[0].strip().lower()
        if sub in ("jpeg", "pjpeg", ""):
            return "jpg"
        if sub == "svg+xml":
            return "svg"
        return sub


@dataclass
class PackagedChapter:
    id: str
    title: str
    content: str
    order: int


@dataclass
class BuildHandoff:
    title: str
    author: str
    chapters: List[PackagedChapter]
    synopsis: str = ""
    publisher: str = ""
    genres: List[str] = field(default_factory=list)
    cover: Optional[CoverImage] = None


# --------- Ordering helpers ---------
def renumber(stubs: Iterable[ChapterStub]) -> List[ChapterStub]:
    """Dense 1..N order in list position. Ids keep pointing at the same chapter."""
    return [replace(s, order=i) for i, s in enumerate(stubs, 1)]


def reorder(stubs: List[ChapterStub], ids_in_order: List[str]) -> List[ChapterStub]:
    by_id = {s.id: s for s in stubs}
    moved = [by_id[i] for i in ids_in_order if i in by_id]
    seen = {s.id for s in moved}
    rest = [s for s in stubs if s.id not in seen]
    return renumber(moved + rest)


def select_range(stubs: List[ChapterStub], start: int, end: int) -> List[ChapterStub]:
    """Mark chapters with start <= order <= end as selected, the rest not."""
    lo, hi = min(start, end), max(start, end)
    return [replace(s, selected=lo <= s.order <= hi) for s in stubs]


def transform_titles(stubs: List[ChapterStub], pattern: str, replacement: str) -> List[ChapterStub]:
    rx = re.compile(pattern)
    return [replace(s, title=rx.sub(replacement, s.title)) for s in stubs]
