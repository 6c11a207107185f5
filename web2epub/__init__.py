"""web2epub: turn a web novel into an EPUB or TXT file."""
from .config import GenerationConfig
from .errors import FetchError, HttpError, ParseError, Web2EpubError
from .fetcher import Fetcher
from .models import Chapter, ChapterStatus, ChapterStub, ChapterUpdate

__version__ = "0.1.0"

__all__ = [
    "GenerationConfig", "Fetcher",
    "Chapter", "ChapterStatus", "ChapterStub", "ChapterUpdate",
    "Web2EpubError", "HttpError", "ParseError", "FetchError",
]
