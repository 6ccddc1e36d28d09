"""Content fingerprints and lightweight image inspection."""

from __future__ import annotations

import hashlib
import io
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO

import imagehash
from PIL import ExifTags, Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


@dataclass
class ImageProbe:
    """What could be learned from the bytes themselves."""

    mime_type: str | None = None
    width: int | None = None
    height: int | None = None
    phash: str | None = None
    exif: dict[str, Any] = field(default_factory=dict)


def compute_fingerprint(data: bytes) -> str:
    """SHA-256 hex digest used to detect byte-identical duplicates."""
    return hashlib.sha256(data).hexdigest()


MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg", "image/x-png": "image/png"}


def canonical_mime(mime_type: str) -> str:
    return MIME_ALIASES.get(mime_type, mime_type)


def _format_to_mime(image_format: str | None) -> str | None:
    if not image_format:
        return None
    return Image.MIME.get(image_format.upper())


def detect_mime(stream: BinaryIO) -> str | None:
    """Sniff the MIME type from the image header; None when not an image."""
    try:
        with Image.open(stream) as image:
            return _format_to_mime(image.format)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        return None


def _jsonable(value: Any) -> Any:
    if hasattr(value, "numerator") and hasattr(value, "denominator"):
        if value.denominator == 0:
            return float(value.numerator)
        return float(value.numerator) / float(value.denominator)
    if isinstance(value, bytes):
        return value.replace(b"\x00", b"").decode("utf-8", errors="ignore")
    if isinstance(value, str):
        return value.replace("\x00", "")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return str(value)


def extract_exif(image: Image.Image) -> dict[str, Any]:
    exif = image.getexif()
    if not exif:
        return {}
    return {str(ExifTags.TAGS.get(tag_id, tag_id)): _jsonable(value) for tag_id, value in exif.items()}


def probe_image(data: bytes) -> ImageProbe:
    """Decode enough of the image to get format, dimensions, EXIF and a pHash.

    Undecodable content yields an empty probe rather than an exception; the
    validation pass reports the MIME mismatch.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            probe = ImageProbe(
                mime_type=_format_to_mime(image.format),
                width=image.width,
                height=image.height,
            )
            try:
                probe.exif = extract_exif(image)
            except Exception as exc:  # corrupted EXIF blocks are common
                logger.warning(f"Error extracting EXIF data: {exc}")
            probe.phash = str(imagehash.phash(image))
            return probe
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        logger.info(f"Could not decode image content: {exc}")
        return ImageProbe()
    except Exception as exc:
        logger.warning(f"Image probe failed: {exc}", exc_info=True)
        return ImageProbe()
