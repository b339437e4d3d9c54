"""Image handling with Pillow -- validation, PNG normalisation, thumbnails.

Generated and uploaded images both pass through here before they are
returned to a client or written to storage.
"""

from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

THUMBNAIL_SIZE = (256, 256)

# Largest decoded bitmap accepted; checked from the header before pixels load.
MAX_IMAGE_PIXELS = 4096 * 4096

_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


class ImageValidationError(Exception):
    """Raised when bytes are not a decodable, supported image."""


@dataclass(frozen=True)
class ImageInfo:
    mime_type: str
    width: int
    height: int


def decode_base64_image(data: str, max_bytes: int) -> bytes:
    """Decode a base64 (optionally data-URL) payload and enforce a size cap."""
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageValidationError("Image is not valid base64") from exc
    if not raw:
        raise ImageValidationError("Image is empty")
    if len(raw) > max_bytes:
        raise ImageValidationError(f"Image exceeds {max_bytes // (1024 * 1024)} MB")
    return raw


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        width, height = image.size
        if width * height > MAX_IMAGE_PIXELS:
            raise ImageValidationError(f"Image dimensions {width}x{height} are too large")
        image.load()
    except Image.DecompressionBombError as exc:
        raise ImageValidationError("Image dimensions are too large") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageValidationError("Unreadable image data") from exc
    return image


def inspect_image(data: bytes) -> ImageInfo:
    """Check that *data* is a supported image and describe it."""
    image = _open(data)
    mime_type = _MIME_TYPES.get(image.format or "")
    if mime_type is None:
        raise ImageValidationError(f"Unsupported image format: {image.format}")
    return ImageInfo(mime_type=mime_type, width=image.width, height=image.height)


def to_png_bytes(data: bytes) -> bytes:
    """Re-encode any supported image as PNG (for final storage)."""
    image = _open(data)
    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def create_thumbnail(data: bytes, max_size: tuple[int, int] = THUMBNAIL_SIZE) -> bytes:
    """Create a thumbnail PNG preserving aspect ratio."""
    thumb = _open(data)
    if thumb.mode not in ("RGB", "RGBA"):
        thumb = thumb.convert("RGBA")
    thumb.thumbnail(max_size, Image.Resampling.LANCZOS)
    buf = io.BytesIO()
    thumb.save(buf, format="PNG")
    return buf.getvalue()
