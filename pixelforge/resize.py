from __future__ import annotations

import math
from typing import Tuple

import cv2
import numpy as np

from .raster import RasterImage


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def fit(width: int, height: int, max_dim: int) -> Tuple[int, int]:
    """
    Aspect-preserving fit so that neither side exceeds max_dim.

    Never upscales: images already within the bound are returned unchanged.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {(width, height)}")
    if width <= max_dim and height <= max_dim:
        return width, height

    if width > height:
        return max_dim, max(1, round_half_up(height / width * max_dim))
    return max(1, round_half_up(width / height * max_dim)), max_dim


def fit_within(width: int, height: int, max_w: int, max_h: int) -> Tuple[int, int]:
    """Two-sided bound used for on-screen previews."""
    if width <= max_w and height <= max_h:
        return width, height
    ratio = min(max_w / width, max_h / height)
    return max(1, round_half_up(width * ratio)), max(1, round_half_up(height * ratio))


def resample(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Resample an (H,W[,C]) uint8 grid to (height,width).

    INTER_AREA when shrinking, bilinear otherwise. Axes are scaled independently,
    so this also performs the non-aspect-preserving stretch used for model input.
    """
    src_h, src_w = pixels.shape[:2]
    if (src_w, src_h) == (width, height):
        return pixels.copy()
    shrinking = width <= src_w and height <= src_h
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    return cv2.resize(pixels, (int(width), int(height)), interpolation=interpolation)


def resize_to_fit(image: RasterImage, max_dim: int) -> RasterImage:
    w, h = fit(image.width, image.height, max_dim)
    if (w, h) == (image.width, image.height):
        return image.copy()
    return RasterImage(resample(image.pixels, w, h))
