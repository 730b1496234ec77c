"""
Centralized configuration constants for the PixelForge image tools.

Ground rules:
- float32 tensors, batch size 1
- PNG output only
"""

# RMBG-1.4 is exported with a fixed 1024x1024 input.
MODEL_INPUT_SIZE = 1024
MAX_IMAGE_DIMENSION = 2048

SUPPORTED_TYPES = ("image/png", "image/jpeg", "image/jpg")
MAX_INPUT_BYTES = 50 * 1024 * 1024

# Watermark preview is bounded on both sides.
PREVIEW_MAX_WIDTH = 600
PREVIEW_MAX_HEIGHT = 400
MIN_PREVIEW_FONT_SIZE = 12

SHADOW_OFFSET = (2, 2)
SHADOW_BLUR = 4
SHADOW_OPACITY = 0.5

TILE_ANGLE_DEG = -30.0
TILE_ROW_FACTOR = 3

DEFAULT_WATERMARK_TEXT = "© PixelForge"
DEFAULT_WATERMARK_POSITION = "bottom-right"
DEFAULT_FONT_SIZE = 32
DEFAULT_COLOR = "#ffffff"
DEFAULT_OPACITY = 50
DEFAULT_FONT = "Inter"

BG_REMOVED_FILENAME = "background-removed.png"
WATERMARKED_FILENAME = "watermarked-image.png"

DEFAULT_MODEL_PATH = "models/rmbg-1.4.onnx"
