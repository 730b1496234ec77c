from __future__ import annotations


class PixelForgeError(Exception):
    """Base class for every failure surfaced by the image tools."""


class UnsupportedFormat(PixelForgeError):
    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported image type: {mime_type!r}. Please select a PNG or JPG image.")
        self.mime_type = mime_type


class OversizeInput(PixelForgeError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Image is too large ({size} bytes). Please select an image under {limit // (1024 * 1024)}MB.")
        self.size = size
        self.limit = limit


class DecodeFailure(PixelForgeError):
    pass


class InferenceFailure(PixelForgeError):
    pass


class InvalidColor(PixelForgeError, ValueError):
    pass
