"""Preview references for files waiting to be uploaded."""

from __future__ import annotations

import base64
import io
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

LOGGER = logging.getLogger(__name__)

DEFAULT_THUMBNAIL_SIZE: Tuple[int, int] = (320, 240)


def to_data_uri(data: bytes, content_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def build_preview(
    data: bytes,
    content_type: str,
    *,
    size: Tuple[int, int] = DEFAULT_THUMBNAIL_SIZE,
) -> Optional[str]:
    """Return a data URI preview for an image, or ``None`` for other files.

    Images are shrunk to fit ``size`` and re-encoded as PNG. Payloads Pillow
    cannot decode are embedded as-is so the browser can still try to show
    them.
    """

    if not content_type.lower().startswith("image/"):
        return None

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.thumbnail(size)
            if image.mode not in {"RGB", "RGBA", "L", "LA", "P"}:
                image = image.convert("RGBA")
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as error:
        LOGGER.debug("Could not build thumbnail preview: %s", error)
        return to_data_uri(data, content_type)

    return to_data_uri(buffer.getvalue(), "image/png")


__all__ = ["DEFAULT_THUMBNAIL_SIZE", "build_preview", "to_data_uri"]
