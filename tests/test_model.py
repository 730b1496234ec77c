import logging
import warnings

import numpy as np
import pytest

from pixelforge import model as model_mod
from pixelforge.errors import InferenceFailure
from pixelforge.inference import run_engine


class _Engine:
    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc

    def run(self, feeds):
        if self.exc is not None:
            raise self.exc
        return self.result


def _x(size: int) -> np.ndarray:
    return np.zeros((1, 3, size, size), dtype=np.float32)


def test_run_engine_flattens_output():
    out = np.arange(16, dtype=np.float32).reshape(1, 1, 4, 4)
    mask = run_engine(_Engine({"output": out}), _x(4), 4)
    assert mask.shape == (16,)
    assert mask.dtype == np.float32
    assert mask[5] == 5.0


def test_run_engine_wraps_engine_errors():
    with pytest.raises(InferenceFailure) as exc:
        run_engine(_Engine(exc=ValueError("bad")), _x(4), 4)
    assert isinstance(exc.value.__cause__, ValueError)


@pytest.mark.parametrize("result", [None, {}, {"logits": np.zeros(16)}, {"output": np.zeros(15)}])
def test_run_engine_rejects_contract_violations(result):
    with pytest.raises(InferenceFailure):
        run_engine(_Engine(result), _x(4), 4)


def test_run_engine_rejects_wrong_input_shape():
    with pytest.raises(InferenceFailure):
        run_engine(_Engine({"output": np.zeros(16)}), np.zeros((1, 3, 4, 5), dtype=np.float32), 4)


@pytest.mark.parametrize("level", [logging.WARNING, logging.DEBUG])
def test_all_nan_output_passes_without_warnings(level, caplog):
    caplog.set_level(level, logger="pixelforge.inference")
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        mask = run_engine(_Engine({"output": np.full(16, np.nan, dtype=np.float32)}), _x(4), 4)
    assert mask.shape == (16,)
    assert np.isnan(mask).all()


def test_missing_model_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        model_mod.OnnxSegmentationEngine(str(tmp_path / "missing.onnx"))
    with pytest.raises(FileNotFoundError):
        model_mod.TorchScriptSegmentationEngine(str(tmp_path / "missing.pt"))


def test_load_engine_dispatches_on_extension(monkeypatch):
    created = []

    class _FakeOnnx:
        def __init__(self, path):
            created.append(("onnx", path))

    class _FakeTorch:
        def __init__(self, path):
            created.append(("torch", path))

    monkeypatch.setattr(model_mod, "OnnxSegmentationEngine", _FakeOnnx)
    monkeypatch.setattr(model_mod, "TorchScriptSegmentationEngine", _FakeTorch)

    progress = []

    class _Sink:
        def update(self, status, pct):
            progress.append(pct)

    assert isinstance(model_mod.load_engine("models/RMBG.ONNX", progress=_Sink()), _FakeOnnx)
    assert isinstance(model_mod.load_engine("models/birefnet.torchscript"), _FakeTorch)
    assert created == [("onnx", "models/RMBG.ONNX"), ("torch", "models/birefnet.torchscript")]
    assert progress == [90, 100]
