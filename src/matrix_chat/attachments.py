"""Image attachment loading for vision requests.

Images travel inline as base64 ``data:`` URIs; there is no upload step.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path

from .exceptions import ValidationError

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tiff", ".tif"}
)

DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024


def is_image_path(path: str) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def validate_image(path: str, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> Path:
    """Resolve an image path and check existence, type and size."""
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ValidationError(f"Image not found: {path}")
    if not resolved.is_file():
        raise ValidationError(f"Not a file: {path}")
    if resolved.suffix.lower() not in IMAGE_EXTENSIONS:
        exts = ", ".join(sorted(IMAGE_EXTENSIONS))
        raise ValidationError(f"Invalid image type. Allowed: {exts}")
    size = resolved.stat().st_size
    if size > max_bytes:
        max_mb = max_bytes / (1024 * 1024)
        raise ValidationError(f"Image too large (max {max_mb:.1f}MB)")
    return resolved


def load_image_data_uri(path: str, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> str:
    """Read an image file and return it as a self-contained data URI."""
    resolved = validate_image(path, max_bytes=max_bytes)
    mime, _ = mimetypes.guess_type(resolved.name)
    if not mime or not mime.startswith("image/"):
        raise ValidationError(f"Unrecognized image type: {resolved.name}")
    encoded = base64.b64encode(resolved.read_bytes()).decode("ascii")
    LOGGER.debug(
        "attachments.image.loaded",
        extra={"event": "attachments.image.loaded", "path": str(resolved)},
    )
    return f"data:{mime};base64,{encoded}"
