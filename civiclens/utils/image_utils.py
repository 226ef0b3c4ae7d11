import base64
import io
import logging
import re
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_MIME = "image/jpeg"
_DATA_URI = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,", re.IGNORECASE)

_EXTENSION_MIME = {
    ".png": "image/png",
    ".webp": "image/webp",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


def detect_mime_from_path(file_path: str) -> str:
    return _EXTENSION_MIME.get(Path(file_path).suffix.lower(), DEFAULT_MIME)


def detect_mime_type(image_data_uri: str) -> str:
    """MIME type from a `data:image/...;base64,` prefix, JPEG when absent."""
    match = _DATA_URI.match(image_data_uri or "")
    if match:
        return match.group(1).lower()
    return DEFAULT_MIME


def split_data_uri(image: str) -> Tuple[bytes, str]:
    """Decode a data URI (or bare base64 string) into raw bytes and its MIME type."""
    mime_type = detect_mime_type(image)
    payload = _DATA_URI.sub("", image, count=1)
    return base64.b64decode(payload), mime_type


def to_data_url(image_bytes: bytes, mime_type: Optional[str] = None) -> str:
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type or DEFAULT_MIME};base64,{encoded}"


async def file_to_data_url(file_path: str, mime_type: Optional[str] = None) -> str:
    """Read an uploaded file and encode it as a data URI for the vision model."""
    async with aiofiles.open(file_path, "rb") as f:
        content = await f.read()
    return to_data_url(content, mime_type or detect_mime_from_path(file_path))


def downscale_image(image_bytes: bytes, max_bytes: int, max_dim: int = 1024) -> Tuple[bytes, Optional[str]]:
    """
    Re-encode oversized images as JPEG so the upload stays under `max_bytes`.

    Returns the (possibly unchanged) bytes and the new MIME type, or None when
    the original was kept.
    """
    if len(image_bytes) <= max_bytes:
        return image_bytes, None
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = img.convert("RGB")
            w, h = img.size
            if max(w, h) > max_dim:
                scale = max_dim / float(max(w, h))
                img = img.resize((int(w * scale), int(h * scale)))
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=70, optimize=True)
        compressed = buf.getvalue()
        logger.info(f"🗜️ Compressed image from {len(image_bytes)} to {len(compressed)} bytes")
        return compressed, "image/jpeg"
    except Exception as e:
        logger.warning(f"⚠️ Image compression failed, sending original: {e}")
        return image_bytes, None
