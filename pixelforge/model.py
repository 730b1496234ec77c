from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional, Protocol

import numpy as np
import onnxruntime as ort

from .contracts import ProgressSink

logger = logging.getLogger(__name__)


class SegmentationEngine(Protocol):
    """
    Opaque inference call: {"input": (1,3,S,S) float32} -> {"output": S*S values}.
    """

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]: ...


class OnnxSegmentationEngine:
    """
    ONNX Runtime session (CPU provider, all graph optimizations).
    """

    def __init__(self, model_path: str):
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"Model not found: {model_path}")

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        try:
            self.session = ort.InferenceSession(model_path, sess_options=options, providers=["CPUExecutionProvider"])
        except Exception as e:  # noqa: BLE001 - surface a helpful error
            raise RuntimeError(f"Failed to load ONNX model: {model_path}") from e

        self.input_name = self.session.get_inputs()[0].name
        self.output_names = [o.name for o in self.session.get_outputs()]

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        x = feeds["input"]
        outputs = self.session.run(None, {self.input_name: x})
        result = dict(zip(self.output_names, outputs))
        # Exports disagree on naming; the first graph output is the matte.
        result.setdefault("output", outputs[0])
        return result


def _primary_tensor(y: Any):
    """
    The matte tensor of a forward pass. A dict answers with its "output" entry when it has
    one; a sequence answers with its last tensor, the final refinement stage.
    """
    import torch

    if isinstance(y, dict):
        candidates = [y["output"]] if "output" in y else list(y.values())
    elif isinstance(y, (list, tuple)):
        candidates = list(reversed(y))
    else:
        candidates = [y]
    for item in candidates:
        if isinstance(item, torch.Tensor):
            return item
    raise RuntimeError(f"Model output carries no tensor: {type(y).__name__}")


def get_device():
    """
    Prefer MPS, then CUDA, then CPU.
    """
    import torch

    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


class TorchScriptSegmentationEngine:
    """
    TorchScript matting model saved via torch.jit.save(), float32, batch size 1.

    BiRefNet-style exports return logits; `apply_sigmoid` converts them to a matte.
    """

    def __init__(self, model_path: str, device=None, apply_sigmoid: bool = True):
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"Model not found: {model_path}")

        import torch

        try:
            # Registers torchvision custom TorchScript ops (e.g. deform_conv2d) before loading.
            import torchvision  # noqa: F401

            # Load on CPU first; some archives carry float64 attributes that MPS rejects.
            model = torch.jit.load(model_path, map_location="cpu")
        except Exception as e:  # noqa: BLE001 - surface a helpful error
            raise RuntimeError(
                "Failed to load model. Expected a TorchScript matting model saved with torch.jit.save()."
            ) from e

        model.eval()
        for p in model.parameters():
            p.requires_grad_(False)

        self.device = device if device is not None else get_device()
        self.model = model.to(dtype=torch.float32).to(self.device)
        self.apply_sigmoid = apply_sigmoid

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        import torch

        x = torch.from_numpy(np.ascontiguousarray(feeds["input"], dtype=np.float32)).to(self.device)
        with torch.no_grad():
            y = _primary_tensor(self.model(x))
        if y.ndim == 4:
            y = y[:, :1, :, :]
        y = y.float()
        if self.apply_sigmoid:
            y = torch.sigmoid(y)
        return {"output": y.detach().to("cpu").numpy().reshape(-1)}


def load_engine(model_path: str, progress: Optional[ProgressSink] = None) -> SegmentationEngine:
    """
    Pick an engine by file extension: `.onnx` -> ONNX Runtime, anything else -> TorchScript.
    """
    if progress is not None:
        progress.update("Initializing model...", 90)

    if model_path.lower().endswith(".onnx"):
        engine: SegmentationEngine = OnnxSegmentationEngine(model_path)
    else:
        engine = TorchScriptSegmentationEngine(model_path)

    logger.info("Loaded %s from %s", type(engine).__name__, model_path)
    if progress is not None:
        progress.update("Ready!", 100)
    return engine
