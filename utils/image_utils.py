"""
Data-URI image helpers

Images travel between the web client and the service as data URIs
("data:image/jpeg;base64,...."). Stored copies are downscaled so that the
history collection fits inside the client storage quota.
"""

import base64
import binascii
import io
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:"
SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/heic", "image/gif")


def parse_data_uri(data_uri: str) -> Tuple[str, str]:
    """
    Split a data URI into (mime_type, base64_payload)

    A bare base64 string is accepted and reported as image/png, which is what
    the Gemini proxy assumes when no mime type is sent.

    Raises:
        ValueError: If the URI header is malformed
    """
    if not data_uri.startswith(DATA_URI_PREFIX):
        return "image/png", data_uri

    header, sep, payload = data_uri.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("Malformed data URI")

    mime_type = header[len(DATA_URI_PREFIX):].split(";")[0] or "image/png"
    return mime_type, payload


def to_data_uri(base64_payload: str, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64_payload}"


def decode_image_bytes(data_uri: str) -> bytes:
    _, payload = parse_data_uri(data_uri)
    return base64.b64decode(payload, validate=False)


def compress_image(data_uri: str, max_size: int = 200, quality: int = 60) -> str:
    """
    Downscale an image so its longer side is at most max_size and re-encode as JPEG

    Args:
        data_uri: Source image as data URI
        max_size: Longest side in pixels
        quality: JPEG quality (1-95)

    Returns:
        JPEG data URI, or "" when the source cannot be decoded
    """
    try:
        image = Image.open(io.BytesIO(decode_image_bytes(data_uri)))
        image.load()
    except (ValueError, binascii.Error, UnidentifiedImageError, OSError) as e:
        logger.warning(f"⚠️ 이미지 압축 실패, 빈 이미지로 대체: {str(e)}")
        return ""

    width, height = image.size
    if width > height:
        if width > max_size:
            height = round(height * max_size / width)
            width = max_size
    elif height > max_size:
        width = round(width * max_size / height)
        height = max_size

    if (width, height) != image.size:
        image = image.resize((max(width, 1), max(height, 1)), Image.LANCZOS)

    if image.mode != "RGB":
        image = image.convert("RGB")

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return to_data_uri(base64.b64encode(buffer.getvalue()).decode("utf-8"), "image/jpeg")


def image_dimensions(data_uri: str) -> Optional[Tuple[int, int]]:
    try:
        return Image.open(io.BytesIO(decode_image_bytes(data_uri))).size
    except (ValueError, binascii.Error, UnidentifiedImageError, OSError):
        return None
