# src/dualocr/image_utils.py
"""
Image pre-processing for the primary engine and content fingerprints for the
result cache.
"""
from __future__ import annotations

import hashlib
import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger("dualocr")

DEFAULT_MAX_DIMENSION = 2000
JPEG_QUALITY = 92

_MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
    "HEIF": "image/heif",
}


def fingerprint(data: bytes) -> str:
    """Stable SHA-256 hex digest of the raw image bytes."""
    return hashlib.sha256(data).hexdigest()


def normalize(data: bytes, max_dimension: int = DEFAULT_MAX_DIMENSION) -> bytes:
    """
    Downscale an image so its longest side is at most ``max_dimension``.

    Returns the input bytes unchanged when the image is already within bounds
    or cannot be decoded; otherwise a JPEG re-encode of the scaled image.
    """
    try:
        with Image.open(io.BytesIO(data)) as im:
            width, height = im.size
            if width <= max_dimension and height <= max_dimension:
                return data

            scale = max_dimension / max(width, height)
            new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
            resized = im.convert("RGB").resize(new_size, Image.LANCZOS)

        out = io.BytesIO()
        resized.save(out, format="JPEG", quality=JPEG_QUALITY)
        logger.debug("Downscaled image %dx%d -> %dx%d", width, height, *new_size)
        return out.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("Image normalization skipped, %s", e)
        return data


def sniff_mime_type(data: bytes, default: str = "image/jpeg") -> str:
    """Best-effort MIME type from the image header; unknown types map to ``default``."""
    fmt: Optional[str] = None
    try:
        with Image.open(io.BytesIO(data)) as im:
            fmt = im.format
    except (UnidentifiedImageError, OSError, ValueError):
        return default
    return _MIME_BY_FORMAT.get(fmt or "", default)
