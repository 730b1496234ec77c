from __future__ import annotations

import asyncio
import logging

import numpy as np

from .config import MODEL_INPUT_SIZE
from .errors import InferenceFailure
from .model import SegmentationEngine

logger = logging.getLogger(__name__)


def run_engine(engine: SegmentationEngine, x: np.ndarray, size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Feed the packed tensor and return the flat float32 mask (length size*size).

    Any engine error or contract violation is raised as InferenceFailure.
    """
    if x.dtype != np.float32:
        x = x.astype(np.float32)
    if x.shape != (1, 3, size, size):
        raise InferenceFailure(f"Expected input tensor (1,3,{size},{size}), got {x.shape}")

    try:
        results = engine.run({"input": x})
    except Exception as e:  # noqa: BLE001 - engine internals are opaque
        raise InferenceFailure(f"Inference failed: {e}") from e

    if not isinstance(results, dict) or "output" not in results:
        raise InferenceFailure("Engine returned no 'output'.")
    mask = np.asarray(results["output"], dtype=np.float32).reshape(-1)
    if mask.size != size * size:
        raise InferenceFailure(f"Unexpected mask length {mask.size}; expected {size * size}")
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Mask range [%.3f, %.3f]", float(mask.min()), float(mask.max()))
    return mask


async def predict_mask(engine: SegmentationEngine, x: np.ndarray, size: int = MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Single suspension point of the background-removal pipeline.
    """
    return await asyncio.to_thread(run_engine, engine, x, size)
