import asyncio
import io
import threading

import numpy as np
import pytest
from PIL import Image

from pixelforge import codec
from pixelforge.contracts import WatermarkSettings
from pixelforge.errors import DecodeFailure, InferenceFailure, OversizeInput, UnsupportedFormat
from pixelforge.pipeline import BackgroundRemover, OperationContext, WatermarkSession

S = 16


def _png_bytes(w: int = 100, h: int = 50, color=(10, 120, 200)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeEngine:
    def __init__(self, value: float = 1.0, size: int = S):
        self.value = value
        self.size = size
        self.feeds = []

    def run(self, feeds):
        self.feeds.append(feeds)
        return {"output": np.full((1, 1, self.size, self.size), self.value, dtype=np.float32)}


class FailingEngine:
    def __init__(self):
        self.calls = 0

    def run(self, feeds):
        self.calls += 1
        raise RuntimeError("session crashed")


class BlockingEngine(FakeEngine):
    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, feeds):
        self.started.set()
        self.release.wait(timeout=5)
        return super().run(feeds)


class RecordingSink:
    def __init__(self):
        self.sections = []
        self.delivered = []
        self.progress = []

    def show(self, section):
        self.sections.append(section)

    def deliver(self, result):
        self.delivered.append(result)

    def update(self, status, progress):
        self.progress.append((status, progress))


def _ctx(data=None, mime="image/png", sink=None):
    sink = sink or RecordingSink()
    return OperationContext(data=data if data is not None else _png_bytes(), mime_type=mime, progress=sink, results=sink)


def _remover(engine):
    return BackgroundRemover(engine, model_size=S, max_dimension=64)


def test_successful_removal():
    engine = FakeEngine(1.0)
    remover = _remover(engine)
    sink = RecordingSink()
    result = asyncio.run(remover.remove(_ctx(sink=sink)))

    assert (result.image.width, result.image.height) == (64, 32)
    assert (result.image.pixels[..., 3] == 255).all()
    assert result.png[:8] == b"\x89PNG\r\n\x1a\n"
    assert result.filename == "background-removed.png"
    assert result.timings.total_s >= 0.0
    assert remover.result is result
    assert remover.original is not None
    assert not remover.is_processing

    assert sink.sections == ["processing", "result"]
    assert sink.delivered == [result]
    percents = [p for _, p in sink.progress]
    assert percents == sorted(percents)

    (feeds,) = engine.feeds
    assert set(feeds) == {"input"}
    assert feeds["input"].shape == (1, 3, S, S)
    assert feeds["input"].dtype == np.float32


def test_rgb_survives_and_alpha_follows_mask():
    for value, alpha in ((5.0, 255), (-3.0, 0), (0.5, 128)):
        result = asyncio.run(_remover(FakeEngine(value)).remove(_ctx(data=_png_bytes(40, 40))))
        assert (result.image.pixels[..., 3] == alpha).all()
        assert result.image.pixels[0, 0, :3].tolist() == [10, 120, 200]


def test_unsupported_type_rejected_without_inference():
    engine = FakeEngine()
    remover = _remover(engine)
    with pytest.raises(UnsupportedFormat):
        asyncio.run(remover.remove(_ctx(mime="image/gif")))
    assert engine.feeds == []
    assert remover.original is None


def test_oversize_rejected(monkeypatch):
    monkeypatch.setattr(codec, "MAX_INPUT_BYTES", 10)
    engine = FakeEngine()
    with pytest.raises(OversizeInput):
        asyncio.run(_remover(engine).remove(_ctx()))
    assert engine.feeds == []


def test_decode_failure_returns_to_upload():
    sink = RecordingSink()
    remover = _remover(FakeEngine())
    with pytest.raises(DecodeFailure):
        asyncio.run(remover.remove(_ctx(data=b"garbage", sink=sink)))
    assert sink.sections == ["processing", "upload"]
    assert not remover.is_processing
    assert remover.original is None


def test_inference_failure_releases_everything():
    engine = FailingEngine()
    remover = _remover(engine)
    sink = RecordingSink()
    with pytest.raises(InferenceFailure) as exc:
        asyncio.run(remover.remove(_ctx(sink=sink)))
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert engine.calls == 1
    assert not remover.is_processing
    assert remover.original is None and remover.result is None
    assert sink.sections[-1] == "upload"


def test_malformed_engine_output_is_inference_failure():
    remover = _remover(FakeEngine(size=S - 1))
    with pytest.raises(InferenceFailure):
        asyncio.run(remover.remove(_ctx()))
    assert not remover.is_processing


def test_second_request_while_busy_is_dropped():
    engine = BlockingEngine()
    remover = _remover(engine)

    async def scenario():
        first = asyncio.create_task(remover.remove(_ctx()))
        while not engine.started.is_set():
            await asyncio.sleep(0.01)
        assert remover.is_processing
        second = await remover.remove(_ctx())
        engine.release.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert second is None
    assert first is not None
    assert len(engine.feeds) == 1
    assert not remover.is_processing


def test_new_operation_releases_previous_result():
    remover = _remover(FakeEngine())
    asyncio.run(remover.remove(_ctx()))
    assert remover.result is not None

    remover.engine = FailingEngine()
    with pytest.raises(InferenceFailure):
        asyncio.run(remover.remove(_ctx()))
    assert remover.result is None


def test_reset_releases_and_shows_upload():
    remover = _remover(FakeEngine())
    asyncio.run(remover.remove(_ctx()))
    sink = RecordingSink()
    remover.reset(sink)
    assert remover.original is None and remover.result is None
    assert sink.sections == ["upload"]


def test_identical_inputs_give_identical_output():
    data = _png_bytes(70, 30)
    a = asyncio.run(_remover(FakeEngine(0.3)).remove(_ctx(data=data)))
    b = asyncio.run(_remover(FakeEngine(0.3)).remove(_ctx(data=data)))
    assert a.png == b.png


def test_watermark_session_roundtrip():
    session = WatermarkSession()
    settings = WatermarkSettings(position="center", opacity=100)
    assert session.preview(settings) is None
    assert session.export(settings) is None

    session.load(_png_bytes(1200, 800), "image/png")
    preview = session.preview(settings)
    assert (preview.width, preview.height) == (600, 400)

    exported = codec.decode_image(session.export(settings))
    assert (exported.width, exported.height) == (1200, 800)
    assert session.filename == "watermarked-image.png"

    session.reset()
    assert session.image is None


def test_watermark_session_rejects_unsupported():
    session = WatermarkSession()
    with pytest.raises(UnsupportedFormat):
        session.load(_png_bytes(), "image/bmp")
    assert session.image is None
