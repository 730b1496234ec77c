from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .codec import decode_image, encode_png, load_image, validate_input
from .composite import composite
from .config import BG_REMOVED_FILENAME, MAX_IMAGE_DIMENSION, MODEL_INPUT_SIZE, WATERMARKED_FILENAME
from .contracts import ProgressSink, ResultSink, WatermarkSettings
from .inference import predict_mask
from .model import SegmentationEngine
from .preprocess import pack
from .raster import RasterImage
from .resize import resize_to_fit
from .watermark import render_export, render_preview

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageTimings:
    decode_s: float
    preprocess_s: float
    inference_s: float
    composite_s: float
    encode_s: float
    total_s: float


@dataclass
class RemovalResult:
    image: RasterImage
    png: bytes
    timings: StageTimings
    filename: str = BG_REMOVED_FILENAME


class NullProgressSink:
    def update(self, status: str, progress: float) -> None:
        return None


class LoggingProgressSink:
    def __init__(self, name: str = ""):
        self.name = name

    def update(self, status: str, progress: float) -> None:
        logger.debug("%s %3d%% %s", self.name, round(progress), status)


class NullResultSink:
    def show(self, section: str) -> None:
        return None

    def deliver(self, result) -> None:
        return None


@dataclass
class OperationContext:
    """Everything one background-removal request needs, built by the caller."""

    data: bytes
    mime_type: str
    progress: ProgressSink = field(default_factory=NullProgressSink)
    results: ResultSink = field(default_factory=NullResultSink)


class BackgroundRemover:
    """
    Linear, guarded pipeline:
      1) Validate (type + size) before any work
      2) Decode
      3) Bound to max dimension
      4) Pack tensor (stretched to the model square)
      5) Inference (the only await)
      6) Composite mask into alpha
      7) Encode PNG

    At most one operation runs at a time; requests arriving meanwhile are dropped.
    """

    def __init__(
        self,
        engine: SegmentationEngine,
        *,
        model_size: int = MODEL_INPUT_SIZE,
        max_dimension: int = MAX_IMAGE_DIMENSION,
    ):
        self.engine = engine
        self.model_size = model_size
        self.max_dimension = max_dimension
        self.original: Optional[RasterImage] = None
        self.result: Optional[RemovalResult] = None
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    def release(self) -> None:
        self.original = None
        self.result = None

    def reset(self, results: Optional[ResultSink] = None) -> None:
        self.release()
        if results is not None:
            results.show("upload")

    async def remove(self, ctx: OperationContext) -> Optional[RemovalResult]:
        validate_input(ctx.mime_type, len(ctx.data))
        if self._processing:
            logger.warning("Background removal already in progress; request dropped.")
            return None

        self._processing = True
        self.release()
        progress = ctx.progress
        try:
            ctx.results.show("processing")
            t0 = time.perf_counter()

            progress.update("Loading image...", 10)
            original = decode_image(ctx.data)
            self.original = original
            t_dec = time.perf_counter()

            progress.update("Preparing image...", 20)
            resized = resize_to_fit(original, self.max_dimension)

            progress.update("Preprocessing...", 30)
            x = pack(resized, self.model_size)
            t_pre = time.perf_counter()

            progress.update("Running AI model...", 50)
            mask = await predict_mask(self.engine, x, self.model_size)
            t_inf = time.perf_counter()

            progress.update("Generating mask...", 80)
            progress.update("Applying transparency...", 90)
            out = composite(resized, mask, self.model_size)
            t_comp = time.perf_counter()

            progress.update("Finalizing...", 95)
            png = encode_png(out)
            t1 = time.perf_counter()

            result = RemovalResult(
                image=out,
                png=png,
                timings=StageTimings(
                    decode_s=t_dec - t0,
                    preprocess_s=t_pre - t_dec,
                    inference_s=t_inf - t_pre,
                    composite_s=t_comp - t_inf,
                    encode_s=t1 - t_comp,
                    total_s=t1 - t0,
                ),
            )
            self.result = result
            ctx.results.deliver(result)
            ctx.results.show("result")
            return result
        except Exception as e:
            logger.error("Processing failed: %s", e)
            self.release()
            ctx.results.show("upload")
            raise
        finally:
            self._processing = False


class WatermarkSession:
    """
    Holds the loaded source image; every render is independent and reads settings afresh.
    """

    filename = WATERMARKED_FILENAME

    def __init__(self) -> None:
        self.image: Optional[RasterImage] = None

    def load(self, data: bytes, mime_type: str) -> RasterImage:
        self.release()
        self.image = load_image(data, mime_type)
        return self.image

    def preview(self, settings: WatermarkSettings) -> Optional[RasterImage]:
        if self.image is None:
            return None
        return render_preview(self.image, settings)

    def export(self, settings: WatermarkSettings) -> Optional[bytes]:
        if self.image is None:
            return None
        return encode_png(render_export(self.image, settings))

    def release(self) -> None:
        self.image = None

    reset = release
