"""Exception types and failure classification."""
import asyncio
from enum import Enum
from typing import Optional

import httpx


class Web2EpubError(Exception):
    """Base for every error raised by web2epub."""


class HttpError(Web2EpubError):
    def __init__(self, message: str, status: int = 0, retry_after: Optional[float] = None,
                 timed_out: bool = False, url: str = ""):
        super().__init__(message)
        self.message = message
        self.status = status
        self.retry_after = retry_after
        self.timed_out = timed_out
        self.url = url


class ParseError(Web2EpubError):
    """Page was fetched but the expected content could not be extracted."""


class SelectorError(ParseError):
    pass


class TocError(ParseError):
    pass


class DetectionError(ParseError):
    pass


class ErrorKind(str, Enum):
    NETWORK = "network"
    CORS = "cors"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    UNKNOWN = "unknown"


class FetchError(Web2EpubError):
    """A failure tagged with the kind that drives retry policy."""

    def __init__(self, kind: ErrorKind, message: str, status: Optional[int] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return f"FetchError(kind={self.kind.value!r}, status={self.status!r}, message={self.message!r})"


NETWORK_WORDS = ("network", "failed to fetch", "offline", "connection", "unreachable")
PARSE_WORDS = ("pars", "selector", "no content", "no chapters")


def classify_error(exc: BaseException) -> FetchError:
    """Map any exception to a FetchError.

    Precedence: timeout, rate limit (429), not found (404), server error
    (5xx), cors (status 0 or CORS wording), network, parse, unknown.
    """
    if isinstance(exc, FetchError):
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    name = type(exc).__name__.lower()
    status = getattr(exc, "status", None)
    if not isinstance(status, int):
        status = None
    retry_after = getattr(exc, "retry_after", None)

    def tagged(kind: ErrorKind) -> FetchError:
        return FetchError(kind, message, status=status, retry_after=retry_after)

    if (getattr(exc, "timed_out", False)
            or isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException))
            or "timeout" in name or "timed out" in lowered):
        return tagged(ErrorKind.TIMEOUT)
    if status == 429:
        return tagged(ErrorKind.RATE_LIMIT)
    if status == 404:
        return tagged(ErrorKind.NOT_FOUND)
    if status is not None and 500 <= status < 600:
        return tagged(ErrorKind.SERVER_ERROR)
    if status == 0 or "cors" in lowered:
        return tagged(ErrorKind.CORS)
    if (isinstance(exc, (httpx.TransportError, ConnectionError))
            or any(w in lowered for w in NETWORK_WORDS)):
        return tagged(ErrorKind.NETWORK)
    if isinstance(exc, ParseError) or any(w in lowered for w in PARSE_WORDS):
        return tagged(ErrorKind.PARSE_ERROR)
    return tagged(ErrorKind.UNKNOWN)
