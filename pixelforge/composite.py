from __future__ import annotations

import cv2
import numpy as np

from .config import MODEL_INPUT_SIZE
from .errors import InferenceFailure
from .raster import RasterImage


def mask_to_gray(mask: np.ndarray, model_size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Clamp a flat model mask to [0,1] and quantize to an 8-bit (S,S) grid.
    """
    m = np.asarray(mask, dtype=np.float32).reshape(-1)
    if m.size != model_size * model_size:
        raise InferenceFailure(f"Expected mask of {model_size * model_size} values, got {m.size}")
    m = np.nan_to_num(m, nan=0.0)
    m = np.clip(m, 0.0, 1.0)
    gray = np.floor(m * 255.0 + 0.5).astype(np.uint8)
    return gray.reshape(model_size, model_size)


def composite(original: RasterImage, mask: np.ndarray, model_size: int = MODEL_INPUT_SIZE) -> RasterImage:
    """
    Write the model mask into the raster's alpha channel, in place.

    Steps:
      1) clamp + quantize mask to 8-bit at model resolution
      2) bilinear resample to the raster's width x height
      3) overwrite alpha; RGB stays bit-identical
    """
    gray = mask_to_gray(mask, model_size)
    if gray.shape != (original.height, original.width):
        gray = cv2.resize(gray, (original.width, original.height), interpolation=cv2.INTER_LINEAR)
    original.pixels[..., 3] = gray
    return original
