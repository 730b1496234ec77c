from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterator, Optional, Protocol, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from .raster import RasterImage
from .resize import resample, round_half_up

Fill = Tuple[int, int, int, int]

# Horizontal alignment -> Pillow anchor with a middle baseline.
_ANCHORS = {"left": "lm", "right": "rm", "center": "mm"}


@dataclass(frozen=True)
class Shadow:
    color: Fill
    offset_x: float
    offset_y: float
    blur: float


class DrawingSurface(Protocol):
    """
    The 2D drawing capability the watermark renderer is given.

    Text is always placed on a middle baseline; `align` is one of left/right/center.
    """

    width: int
    height: int

    def draw_image(self, image: RasterImage, x: int, y: int, w: int, h: int) -> None: ...

    def get_pixels(self) -> RasterImage: ...

    def put_pixels(self, image: RasterImage) -> None: ...

    def measure_text(self, text: str, family: str, size: int) -> float: ...

    def fill_text(
        self,
        text: str,
        x: float,
        y: float,
        *,
        family: str,
        size: int,
        fill: Fill,
        align: str = "left",
        shadow: Optional[Shadow] = None,
    ) -> None: ...

    def rotated(self, degrees: float): ...


@lru_cache(maxsize=32)
def load_font(family: str, size: int) -> ImageFont.FreeTypeFont:
    """
    Resolve a font family name to a FreeType font, falling back to Pillow's bundled default.
    """
    for name in (family, f"{family}.ttf", f"{family}-Regular.ttf"):
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _stamp(text: str, font: ImageFont.FreeTypeFont, fill: Fill, anchor: str, margin: int) -> Tuple[Image.Image, int, int]:
    """
    Render text onto a tight transparent tile; returns (tile, anchor_x, anchor_y) in tile coords.
    """
    l, t, r, b = font.getbbox(text, anchor=anchor)
    w = max(1, int(math.ceil(r - l)) + 2 * margin)
    h = max(1, int(math.ceil(b - t)) + 2 * margin)
    ax, ay = margin - int(math.floor(l)), margin - int(math.floor(t))
    tile = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    ImageDraw.Draw(tile).text((ax, ay), text, font=font, fill=fill, anchor=anchor)
    return tile, ax, ay


def _center_on_anchor(tile: Image.Image, ax: int, ay: int) -> Image.Image:
    """Pad a tile so its anchor sits at the exact centre (rotation pivots about the centre)."""
    w, h = tile.size
    half_w = max(ax, w - ax)
    half_h = max(ay, h - ay)
    out = Image.new("RGBA", (2 * half_w, 2 * half_h), (0, 0, 0, 0))
    out.paste(tile, (half_w - ax, half_h - ay))
    return out


class PillowSurface:
    """
    DrawingSurface over an RGBA PIL image.

    Drawing is source-over alpha compositing. Rotation is about the surface origin,
    in canvas convention (negative degrees turn counter-clockwise on screen).
    """

    def __init__(self, width: int, height: int):
        self.width = int(width)
        self.height = int(height)
        self.image = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        self._rotation = 0.0
        self._tiles: Dict[tuple, Tuple[Image.Image, int, int]] = {}

    @classmethod
    def from_raster(cls, image: RasterImage) -> "PillowSurface":
        surface = cls(image.width, image.height)
        surface.put_pixels(image)
        return surface

    def draw_image(self, image: RasterImage, x: int, y: int, w: int, h: int) -> None:
        pixels = resample(image.pixels, int(w), int(h))
        self._composite_at(Image.fromarray(pixels), int(x), int(y))

    def get_pixels(self) -> RasterImage:
        return RasterImage.from_pil(self.image)

    def put_pixels(self, image: RasterImage) -> None:
        if (image.width, image.height) != (self.width, self.height):
            raise ValueError(f"Pixel buffer {image.width}x{image.height} does not match surface {self.width}x{self.height}")
        self.image = image.copy().to_pil()

    def measure_text(self, text: str, family: str, size: int) -> float:
        return float(load_font(family, int(size)).getlength(text))

    @contextmanager
    def rotated(self, degrees: float) -> Iterator["PillowSurface"]:
        saved = self._rotation
        self._rotation = saved + float(degrees)
        try:
            yield self
        finally:
            self._rotation = saved

    @property
    def rotation(self) -> float:
        return self._rotation

    def to_device(self, x: float, y: float) -> Tuple[float, float]:
        theta = math.radians(self._rotation)
        c, s = math.cos(theta), math.sin(theta)
        return x * c - y * s, x * s + y * c

    def fill_text(
        self,
        text: str,
        x: float,
        y: float,
        *,
        family: str,
        size: int,
        fill: Fill,
        align: str = "left",
        shadow: Optional[Shadow] = None,
    ) -> None:
        if not text:
            return
        anchor = _ANCHORS.get(align, "lm")
        size = int(size)
        dx, dy = self.to_device(x, y)

        if shadow is not None:
            # Canvas multiplies shadow alpha by the fill alpha.
            sa = int(shadow.color[3] * fill[3] / 255.0 + 0.5)
            margin = int(math.ceil(shadow.blur)) * 2
            tile, ax, ay = self._tile(text, family, size, shadow.color[:3] + (sa,), anchor, margin)
            if shadow.blur > 0:
                tile = tile.filter(ImageFilter.GaussianBlur(shadow.blur / 2.0))
            self._place(tile, ax, ay, dx + shadow.offset_x, dy + shadow.offset_y)

        tile, ax, ay = self._tile(text, family, size, tuple(fill), anchor, 1)
        self._place(tile, ax, ay, dx, dy)

    def _tile(
        self, text: str, family: str, size: int, fill: Fill, anchor: str, margin: int
    ) -> Tuple[Image.Image, int, int]:
        key = (text, family, size, fill, anchor, margin, self._rotation)
        cached = self._tiles.get(key)
        if cached is not None:
            return cached
        tile, ax, ay = _stamp(text, load_font(family, size), fill, anchor, margin)
        if self._rotation:
            centered = _center_on_anchor(tile, ax, ay)
            tile = centered.rotate(-self._rotation, resample=Image.Resampling.BICUBIC, expand=True)
            ax, ay = tile.width // 2, tile.height // 2
        self._tiles[key] = (tile, ax, ay)
        return tile, ax, ay

    def _place(self, tile: Image.Image, ax: int, ay: int, x: float, y: float) -> None:
        self._composite_at(tile, round_half_up(x) - ax, round_half_up(y) - ay)

    def _composite_at(self, src: Image.Image, left: int, top: int) -> None:
        """Source-over composite clipped to the surface (Pillow rejects negative destinations)."""
        x0, y0 = max(0, left), max(0, top)
        x1, y1 = min(self.width, left + src.width), min(self.height, top + src.height)
        if x0 >= x1 or y0 >= y1:
            return
        if src.mode != "RGBA":
            src = src.convert("RGBA")
        self.image.alpha_composite(src, dest=(x0, y0), source=(x0 - left, y0 - top, x1 - left, y1 - top))
