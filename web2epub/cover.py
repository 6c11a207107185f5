import base64
import binascii
import logging
import mimetypes
import re
from typing import Optional
from urllib.parse import urlparse

from .config import GenerationConfig
from .models import CoverImage

logger = logging.getLogger(__name__)

DATA_URI = re.compile(r"^data:(image/[a-z+.-]+);base64,(.+)$", re.I | re.S)


def media_type_from_ext(path: str) -> str:
    guessed, _ = mimetypes.guess_type(urlparse(path).path)
    if guessed and guessed.startswith("image/"):
        return guessed
    return "image/jpeg"


def decode_data_uri(value: str) -> Optional[CoverImage]:
    m = DATA_URI.match(value.strip())
    if not m:
        return None
    try:
        data = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError):
        return None
    return CoverImage(data=data, media_type=m.group(1).lower())


async def resolve_cover(fetcher, config: GenerationConfig) -> Optional[CoverImage]:
    """Inline data URI first, then the cover URL. Never raises for a bad cover."""
    if config.cover_image_base64:
        cover = decode_data_uri(config.cover_image_base64)
        if cover is not None:
            return cover
        logger.warning("cover_image_base64 is not an image data URI; ignoring it")

    if not config.cover_image_url:
        return None
    try:
        data, content_type = await fetcher.fetch_bytes(config.cover_image_url, config.timeout_ms)
    except Exception as e:
        logger.warning("cover fetch failed for %s: %s", config.cover_image_url, e)
        return None
    if not data:
        logger.warning("cover at %s is empty", config.cover_image_url)
        return None
    media_type = content_type.split(";")[0].strip().lower()
    if not media_type.startswith("image/"):
        media_type = media_type_from_ext(config.cover_image_url)
    return CoverImage(data=data, media_type=media_type)
