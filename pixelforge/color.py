from __future__ import annotations

import re
from typing import Tuple

from .errors import InvalidColor

_HEX_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

Rgba = Tuple[int, int, int, float]


def to_rgba(hex_color: str, opacity_percent: float) -> Rgba:
    """
    Convert `#RRGGBB` + opacity percent (0-100) into (r, g, b, alpha) with alpha in [0,1].
    """
    if not isinstance(hex_color, str) or not _HEX_RE.match(hex_color):
        raise InvalidColor(f"Expected #RRGGBB hex color, got {hex_color!r}")
    r = int(hex_color[1:3], 16)
    g = int(hex_color[3:5], 16)
    b = int(hex_color[5:7], 16)
    return r, g, b, float(opacity_percent) / 100.0


def to_rgba8(hex_color: str, opacity_percent: float) -> Tuple[int, int, int, int]:
    """Same as `to_rgba` but with alpha scaled to 0-255 for raster drawing."""
    r, g, b, a = to_rgba(hex_color, opacity_percent)
    a = min(1.0, max(0.0, a))
    return r, g, b, int(a * 255.0 + 0.5)
