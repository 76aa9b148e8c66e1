"""Inline image payloads for model requests (base64 JPEG data URIs)."""
from __future__ import annotations
from typing import Optional, Tuple
import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}
MAX_BYTES = 10 * 1024 * 1024  # 10MB
MAX_EDGE = 1024  # px, longest side sent to the model
JPEG_QUALITY = 85

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


class InvalidImage(ValueError):
    pass


def to_jpeg_data_uri(raw: bytes) -> str:
    """Downscale + re-encode an uploaded image as a JPEG data URI."""
    if not raw:
        raise InvalidImage("empty_image")
    if len(raw) > MAX_BYTES:
        raise InvalidImage("file_too_large")
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImage("unreadable_image") from e
    if img.mode != "RGB":
        img = img.convert("RGB")
    img.thumbnail((MAX_EDGE, MAX_EDGE))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def split_data_uri(uri: str) -> Optional[Tuple[str, bytes]]:
    """(mime, bytes) for a base64 data URI, None for anything else (e.g. https URLs)."""
    if not isinstance(uri, str):
        return None
    m = _DATA_URI_RE.match(uri.strip())
    if not m:
        return None
    try:
        return m.group("mime"), base64.b64decode(m.group("data"), validate=False)
    except (binascii.Error, ValueError):
        return None


def is_usable_source(uri: Optional[str]) -> bool:
    # media upload may hand back a compressed data URI instead of a remote URL
    if not uri:
        return False
    u = uri.strip()
    return u.startswith("https://") or u.startswith("http://") or u.startswith("data:image/")
