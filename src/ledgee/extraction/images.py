"""Building extraction requests from image files."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ledgee.models.invoice import ExtractionRequest

SUPPORTED_IMAGE_TYPES = {
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/bmp",
    "image/tiff",
    "image/webp",
}

_FORMAT_TO_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
    "WEBP": "image/webp",
}


class UnsupportedImageError(ValueError):
    """Raised when an upload cannot be decoded as an invoice photo."""


def detect_mime_type(content: bytes) -> str:
    """Return the MIME type Pillow recognizes for ``content``."""

    try:
        with Image.open(io.BytesIO(content)) as image:
            image_format = (image.format or "").upper()
    except UnidentifiedImageError as exc:
        raise UnsupportedImageError("File is not an image format the extractor supports.") from exc
    mime_type = _FORMAT_TO_MIME.get(image_format)
    if mime_type is None:
        raise UnsupportedImageError(f"Unsupported image format {image_format or 'unknown'}")
    return mime_type


def load_request(path: Path, *, backend: Optional[str] = None) -> ExtractionRequest:
    """Read an image from disk and wrap it in an ExtractionRequest."""

    content = path.read_bytes()
    if not content:
        raise UnsupportedImageError(f"{path.name} is empty.")
    mime_type = detect_mime_type(content)
    if mime_type not in SUPPORTED_IMAGE_TYPES:  # pragma: no cover - table kept in sync
        raise UnsupportedImageError(f"Unsupported content type {mime_type}")
    return ExtractionRequest(
        content=content,
        mime_type=mime_type,
        backend=backend,
        filename=path.name,
    )


__all__ = ["SUPPORTED_IMAGE_TYPES", "UnsupportedImageError", "detect_mime_type", "load_request"]
