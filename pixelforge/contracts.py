from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field

from .config import (
    DEFAULT_COLOR,
    DEFAULT_FONT,
    DEFAULT_FONT_SIZE,
    DEFAULT_OPACITY,
    DEFAULT_WATERMARK_POSITION,
    DEFAULT_WATERMARK_TEXT,
)

POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right", "center", "tile")


class WatermarkSettings(BaseModel):
    """
    Caller-owned watermark configuration; re-read on every render.

    `position` is not restricted to POSITIONS: unknown values render bottom-right.
    """

    text: str = DEFAULT_WATERMARK_TEXT
    position: str = DEFAULT_WATERMARK_POSITION
    font_size: int = Field(default=DEFAULT_FONT_SIZE, gt=0)
    color: str = Field(default=DEFAULT_COLOR, pattern=r"^#[0-9a-fA-F]{6}$")
    opacity: int = Field(default=DEFAULT_OPACITY, ge=0, le=100)
    font: str = DEFAULT_FONT

    @property
    def display_text(self) -> str:
        return self.text or DEFAULT_WATERMARK_TEXT


class ProgressSink(Protocol):
    def update(self, status: str, progress: float) -> None: ...


class ResultSink(Protocol):
    def show(self, section: str) -> None: ...

    def deliver(self, result) -> None: ...
