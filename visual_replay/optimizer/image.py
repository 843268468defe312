"""
Screenshot encoding helpers and Pillow-based recompression.

A screenshot value is either inline image data (a ``data:image/...;base64,``
URL or bare base64) or a relative path to a file written by the export
utility. Every helper here accepts both forms.
"""

import base64
import binascii
import io
import math
import re
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from visual_replay.error_handling.exceptions import OptimizationFault
from visual_replay.monitoring.logger import get_logger

logger = get_logger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[\w+.-]+;base64,", re.IGNORECASE)
PATH_REFERENCE = re.compile(r"^[\w\-. /\\]+\.(png|jpe?g|webp|gif)$", re.IGNORECASE)

# Fallback JPEG qualities tried when a downscaled image still encodes larger
_FALLBACK_QUALITIES = (60, 40, 20, 10)


def is_inline_image(value: Optional[str]) -> bool:
    """True for data URLs and bare base64 payloads."""
    if not value:
        return False
    return bool(DATA_URL_PREFIX.match(value)) or not is_path_reference(value)


def is_path_reference(value: Optional[str]) -> bool:
    """True when the screenshot value points at a file instead of holding data."""
    if not value or DATA_URL_PREFIX.match(value):
        return False
    return bool(PATH_REFERENCE.match(value))


def strip_data_url(value: str) -> str:
    """Remove a ``data:image/...;base64,`` prefix if present."""
    return DATA_URL_PREFIX.sub("", value, count=1)


def estimate_image_bytes(value: Optional[str]) -> int:
    """
    Decoded byte size of an inline image, computed from its base64 length.

    Path references contribute nothing: the payload lives outside the record.
    """
    if not value or is_path_reference(value):
        return 0
    return math.ceil(len(strip_data_url(value)) * 3 / 4)


def image_size_kb(value: Optional[str]) -> float:
    return round(estimate_image_bytes(value) / 1024, 2)


def decode_inline_image(value: str) -> bytes:
    """Decode inline image data, raising OptimizationFault on malformed base64."""
    try:
        return base64.b64decode(strip_data_url(value), validate=True)
    except (binascii.Error, ValueError) as e:
        raise OptimizationFault("Screenshot is not valid base64 data", cause=e)


def encode_data_url(data: bytes, image_format: str = "png") -> str:
    mime = "jpeg" if image_format.lower() in ("jpg", "jpeg") else image_format.lower()
    return f"data:image/{mime};base64,{base64.b64encode(data).decode('ascii')}"


def load_screenshot_bytes(
    value: Optional[str], base_dir: Optional[Union[str, Path]] = None
) -> Optional[bytes]:
    """
    Return raw image bytes for either screenshot representation.

    Args:
        value: Inline image data or a relative/absolute file path
        base_dir: Directory relative paths are resolved against

    Returns:
        Image bytes, or None when the value is empty, unreadable or missing
    """
    if not value:
        return None

    if is_path_reference(value):
        path = Path(value.replace("\\", "/"))
        if not path.is_absolute() and base_dir is not None:
            path = Path(base_dir) / path
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning(
                "Screenshot file could not be read",
                extra={"path": str(path), "error": str(e)},
            )
            return None

    try:
        return decode_inline_image(value)
    except OptimizationFault as e:
        logger.warning("Inline screenshot could not be decoded", extra={"error": e.message})
        return None


def _flatten_for_jpeg(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _encode(image: Image.Image, image_format: str, quality: int) -> bytes:
    # Re-encoding without exif/pnginfo drops all metadata
    buffer = io.BytesIO()
    if image_format == "jpeg":
        _flatten_for_jpeg(image).save(buffer, format="JPEG", quality=quality, optimize=True)
    else:
        image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def read_dimensions(data: bytes) -> Tuple[int, int]:
    """Width and height of an encoded image."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError) as e:
        raise OptimizationFault("Screenshot is not a readable image", cause=e)


def optimize_image(
    value: str,
    quality: int = 80,
    max_width: int = 400,
    max_height: int = 400,
) -> str:
    """
    Downscale and recompress one inline screenshot.

    The image is shrunk to fit ``max_width`` x ``max_height`` (never enlarged),
    encoded as PNG and as JPEG at ``quality``, and the smaller encoding wins.
    An image that already fits is returned as-is unless re-encoding shrinks it.

    Args:
        value: Inline image data
        quality: JPEG quality for the lossy candidate
        max_width: Maximum output width
        max_height: Maximum output height

    Returns:
        Data URL of the optimized image, or ``value`` unchanged

    Raises:
        OptimizationFault: If the value cannot be decoded or re-encoded
    """
    raw = decode_inline_image(value)

    try:
        with Image.open(io.BytesIO(raw)) as source:
            source.load()
            fits = source.width <= max_width and source.height <= max_height
            working = source.copy()
    except (UnidentifiedImageError, OSError) as e:
        raise OptimizationFault("Screenshot is not a readable image", cause=e)

    try:
        working.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
        candidates = [
            ("png", _encode(working, "png", quality)),
            ("jpeg", _encode(working, "jpeg", quality)),
        ]
        image_format, encoded = min(candidates, key=lambda c: len(c[1]))

        if len(encoded) >= len(raw):
            if fits:
                return value
            for fallback in _FALLBACK_QUALITIES:
                if fallback >= quality:
                    continue
                lower = _encode(working, "jpeg", fallback)
                if len(lower) < len(encoded):
                    image_format, encoded = "jpeg", lower
                if len(encoded) < len(raw):
                    break
    except (OSError, ValueError) as e:
        raise OptimizationFault("Screenshot could not be re-encoded", cause=e)

    logger.debug(
        "Screenshot optimized",
        extra={
            "original_bytes": len(raw),
            "optimized_bytes": len(encoded),
            "dimensions": list(working.size),
            "format": image_format,
        },
    )
    return encode_data_url(encoded, image_format)
