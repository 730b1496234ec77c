from __future__ import annotations

import io
import logging

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .config import MAX_INPUT_BYTES, SUPPORTED_TYPES
from .errors import DecodeFailure, OversizeInput, UnsupportedFormat
from .raster import RasterImage

logger = logging.getLogger(__name__)

# Pillow keeps 16-bit grayscale PNGs as 32-bit integer modes; convert("RGBA") would clip them.
_DEEP_MODES = ("I;16", "I;16B", "I;16L", "I")


def validate_input(mime_type: str, size: int) -> None:
    """
    Gate applied before any decode work:
      - declared type must be PNG or JPEG
      - payload must be under MAX_INPUT_BYTES
    """
    if (mime_type or "").lower() not in SUPPORTED_TYPES:
        raise UnsupportedFormat(mime_type)
    if size > MAX_INPUT_BYTES:
        raise OversizeInput(size, MAX_INPUT_BYTES)


def _narrow_deep(img: Image.Image) -> Image.Image:
    """Scale a 16-bit grayscale image down to 8-bit L by keeping the high byte."""
    arr = np.asarray(img).astype(np.int64) >> 8
    return Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8))


def decode_image(data: bytes) -> RasterImage:
    """
    Decode PNG/JPEG bytes into an RGBA RasterImage (EXIF orientation applied).
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        img = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, EOFError, ValueError) as e:
        raise DecodeFailure(f"Failed to load image: {e}") from e

    if img.width <= 0 or img.height <= 0:
        raise DecodeFailure(f"Invalid image size: {img.size}")
    if img.mode in _DEEP_MODES:
        img = _narrow_deep(img)
    raster = RasterImage.from_pil(img)
    logger.debug("Decoded image %dx%d", raster.width, raster.height)
    return raster


def load_image(data: bytes, mime_type: str) -> RasterImage:
    validate_input(mime_type, len(data))
    return decode_image(data)


def encode_png(raster: RasterImage) -> bytes:
    """
    Encode as lossless RGBA PNG.
    """
    buf = io.BytesIO()
    raster.to_pil().save(buf, format="PNG", optimize=False)
    return buf.getvalue()
