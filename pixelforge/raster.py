from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image


@dataclass
class RasterImage:
    """
    Interleaved RGBA8 pixels, row-major.

    `pixels` is a uint8 ndarray of shape (height, width, 4); `buffer` is the flat
    width*height*4 view of the same memory.
    """

    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Expected RGBA image (H,W,4), got {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")
        if not self.pixels.flags["C_CONTIGUOUS"]:
            self.pixels = np.ascontiguousarray(self.pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def buffer(self) -> np.ndarray:
        return self.pixels.reshape(-1)

    def copy(self) -> "RasterImage":
        return RasterImage(self.pixels.copy())

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    @classmethod
    def from_pil(cls, img: Image.Image) -> "RasterImage":
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return cls(np.array(img, dtype=np.uint8))
