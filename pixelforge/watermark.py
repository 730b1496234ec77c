from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Tuple

from .color import to_rgba8
from .config import (
    MIN_PREVIEW_FONT_SIZE,
    PREVIEW_MAX_HEIGHT,
    PREVIEW_MAX_WIDTH,
    SHADOW_BLUR,
    SHADOW_OFFSET,
    SHADOW_OPACITY,
    TILE_ANGLE_DEG,
    TILE_ROW_FACTOR,
)
from .contracts import WatermarkSettings
from .raster import RasterImage
from .resize import fit_within, round_half_up
from .surface import DrawingSurface, PillowSurface, Shadow

DEFAULT_SHADOW = Shadow(
    color=(0, 0, 0, int(SHADOW_OPACITY * 255 + 0.5)),
    offset_x=SHADOW_OFFSET[0],
    offset_y=SHADOW_OFFSET[1],
    blur=SHADOW_BLUR,
)


@dataclass(frozen=True)
class Anchor:
    x: float
    y: float
    align: str


def effective_font_size(font_size: int, canvas_width: int, source_width: int, preview: bool) -> int:
    """
    Preview text shrinks with the canvas (never below MIN_PREVIEW_FONT_SIZE);
    the full-resolution export uses the configured size as-is.
    """
    if not preview:
        return int(font_size)
    return max(MIN_PREVIEW_FONT_SIZE, round_half_up(font_size * (canvas_width / source_width)))


def anchor_for(position: str, width: float, height: float, font_size: float) -> Anchor:
    """
    Fixed anchor + alignment per named position. Padding equals the font size.
    Unknown positions fall back to bottom-right.
    """
    padding = font_size
    half = font_size / 2
    if position == "top-left":
        return Anchor(padding, padding + half, "left")
    if position == "top-right":
        return Anchor(width - padding, padding + half, "right")
    if position == "bottom-left":
        return Anchor(padding, height - padding - half, "left")
    if position == "center":
        return Anchor(width / 2, height / 2, "center")
    return Anchor(width - padding, height - padding - half, "right")


def tile_steps(text_width: float, font_size: float) -> Tuple[float, float]:
    padding = font_size
    return text_width + padding * 2, font_size * TILE_ROW_FACTOR


def tile_grid(width: float, height: float, step_x: float, step_y: float) -> Iterator[Tuple[float, float]]:
    """
    Stamp positions (col, row) in rotated space, rows over [-height, 2*height) and
    columns over [-width, 2*width), so the whole canvas stays covered after rotation.
    """
    if step_x <= 0 or step_y <= 0:
        raise ValueError(f"Tile steps must be positive, got {(step_x, step_y)}")
    row = -height
    while row < height * 2:
        col = -width
        while col < width * 2:
            yield col, row
            col += step_x
        row += step_y


def render(
    surface: DrawingSurface,
    settings: WatermarkSettings,
    canvas_width: int,
    canvas_height: int,
    source_width: int,
    *,
    preview: bool,
) -> None:
    """
    Draw the watermark described by `settings` onto `surface`.

    Preview and export share every step except the font-size scaling.
    """
    text = settings.display_text
    font_size = effective_font_size(settings.font_size, canvas_width, source_width, preview)
    fill = to_rgba8(settings.color, settings.opacity)

    if settings.position == "tile":
        text_width = surface.measure_text(text, settings.font, font_size)
        step_x, step_y = tile_steps(text_width, font_size)
        with surface.rotated(TILE_ANGLE_DEG):
            for col, row in tile_grid(canvas_width, canvas_height, step_x, step_y):
                surface.fill_text(text, col, row, family=settings.font, size=font_size, fill=fill, align="center")
        return

    anchor = anchor_for(settings.position, canvas_width, canvas_height, font_size)
    surface.fill_text(
        text,
        anchor.x,
        anchor.y,
        family=settings.font,
        size=font_size,
        fill=fill,
        align=anchor.align,
        shadow=DEFAULT_SHADOW,
    )


def render_preview(
    image: RasterImage,
    settings: WatermarkSettings,
    max_width: int = PREVIEW_MAX_WIDTH,
    max_height: int = PREVIEW_MAX_HEIGHT,
) -> RasterImage:
    width, height = fit_within(image.width, image.height, max_width, max_height)
    surface = PillowSurface(width, height)
    surface.draw_image(image, 0, 0, width, height)
    render(surface, settings, width, height, image.width, preview=True)
    return surface.get_pixels()


def render_export(image: RasterImage, settings: WatermarkSettings) -> RasterImage:
    surface = PillowSurface.from_raster(image)
    render(surface, settings, image.width, image.height, image.width, preview=False)
    return surface.get_pixels()
