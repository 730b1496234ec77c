from __future__ import annotations

import numpy as np

from .config import MODEL_INPUT_SIZE
from .errors import DecodeFailure
from .raster import RasterImage
from .resize import resample


def pack(image: RasterImage, size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Stretch an RGBA raster onto a size x size grid and emit a planar tensor.

    Output:
      - float32 ndarray, shape (1, 3, size, size), values in [0,1]
      - channel 0 = R, 1 = G, 2 = B (alpha dropped)

    Aspect ratio is NOT preserved; non-square inputs are stretched.
    """
    pixels = getattr(image, "pixels", None)
    if not isinstance(pixels, np.ndarray) or pixels.ndim != 3 or pixels.shape[2] != 4 or pixels.size == 0:
        raise DecodeFailure(f"Cannot read source surface: {getattr(pixels, 'shape', None)}")
    if pixels.dtype != np.uint8:
        raise DecodeFailure(f"Expected uint8 RGBA pixels, got {pixels.dtype}")

    square = resample(pixels, size, size)
    x = square[..., :3].astype(np.float32) / 255.0
    x = np.transpose(x, (2, 0, 1))  # CHW
    return np.ascontiguousarray(x[np.newaxis, ...], dtype=np.float32)
