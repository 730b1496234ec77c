from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import os
import time
from pathlib import Path
from typing import Iterator

from dotenv import load_dotenv
from tqdm import tqdm

from .codec import encode_png
from .config import BG_REMOVED_FILENAME, DEFAULT_MODEL_PATH, WATERMARKED_FILENAME
from .contracts import POSITIONS, WatermarkSettings
from .errors import PixelForgeError
from .model import load_engine
from .pipeline import BackgroundRemover, LoggingProgressSink, OperationContext, WatermarkSession


def _iter_images(input_path: Path) -> Iterator[Path]:
    exts = {".jpg", ".jpeg", ".png"}
    if input_path.is_file():
        yield input_path
        return
    for p in sorted(input_path.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def _mime_type(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "application/octet-stream"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def _remove_backgrounds(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    output_dir = Path(args.output)
    if not input_path.exists():
        raise FileNotFoundError(f"Input not found: {input_path}")

    images = list(_iter_images(input_path))
    if not images:
        print(f"No images found under {input_path}")
        return 0

    engine = load_engine(args.model, progress=LoggingProgressSink("model"))
    remover = BackgroundRemover(engine)
    output_dir.mkdir(parents=True, exist_ok=True)

    failed = 0
    total0 = time.perf_counter()
    for img_path in tqdm(images, desc="Removing backgrounds", unit="img"):
        if input_path.is_file():
            out_path = output_dir / BG_REMOVED_FILENAME
        else:
            out_path = (output_dir / img_path.relative_to(input_path)).with_suffix(".png")
        ctx = OperationContext(
            data=img_path.read_bytes(),
            mime_type=_mime_type(img_path),
            progress=LoggingProgressSink(img_path.name),
        )
        try:
            result = await remover.remove(ctx)
        except PixelForgeError as e:
            failed += 1
            if args.fail_fast:
                raise
            print(f"{img_path.name}: FAILED ({type(e).__name__}: {e})")
            continue

        if result is None:
            continue
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(result.png)
        t = result.timings
        print(
            f"{img_path.name}: total={t.total_s:.3f}s "
            f"(dec={t.decode_s:.3f}s pre={t.preprocess_s:.3f}s inf={t.inference_s:.3f}s "
            f"comp={t.composite_s:.3f}s enc={t.encode_s:.3f}s)"
        )
        remover.reset()

    total1 = time.perf_counter()
    print(f"Done. {len(images) - failed}/{len(images)} images in {total1 - total0:.2f}s")
    return 1 if failed else 0


def _watermark(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.is_file():
        raise FileNotFoundError(f"Input not found: {input_path}")

    settings = WatermarkSettings(
        text=args.text,
        position=args.position,
        font_size=args.font_size,
        color=args.color,
        opacity=args.opacity,
        font=args.font,
    )
    session = WatermarkSession()
    session.load(input_path.read_bytes(), _mime_type(input_path))

    out_path = Path(args.output)
    if out_path.is_dir():
        out_path = out_path / WATERMARKED_FILENAME
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(session.export(settings))
    print(f"Saved {out_path}")

    if args.preview:
        preview_path = Path(args.preview)
        preview_path.parent.mkdir(parents=True, exist_ok=True)
        preview_path.write_bytes(encode_png(session.preview(settings)))
        print(f"Saved preview {preview_path}")

    session.release()
    return 0


def build_parser() -> argparse.ArgumentParser:
    defaults = WatermarkSettings()
    parser = argparse.ArgumentParser(prog="pixelforge", description="Local background removal and text watermarking.")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level (default: $LOG_LEVEL or INFO).")
    sub = parser.add_subparsers(dest="command", required=True)

    rb = sub.add_parser("remove-bg", help="Strip backgrounds with a segmentation model (RGBA PNG output).")
    rb.add_argument("--input", required=True, type=str, help="Image file or directory of PNG/JPEG images.")
    rb.add_argument("--output", required=True, type=str, help="Output directory for RGBA PNGs.")
    rb.add_argument(
        "--model",
        default=os.getenv("PIXELFORGE_MODEL", DEFAULT_MODEL_PATH),
        type=str,
        help="Model path: .onnx (ONNX Runtime) or a TorchScript file. Default: $PIXELFORGE_MODEL.",
    )
    rb.add_argument("--fail-fast", action="store_true", help="Stop at the first failing image.")

    wm = sub.add_parser("watermark", help="Stamp a text watermark onto an image.")
    wm.add_argument("--input", required=True, type=str, help="PNG/JPEG image.")
    wm.add_argument("--output", required=True, type=str, help="Output PNG path (or directory).")
    wm.add_argument("--text", default=defaults.text)
    wm.add_argument("--position", default=defaults.position, choices=POSITIONS)
    wm.add_argument("--font-size", default=defaults.font_size, type=int)
    wm.add_argument("--color", default=defaults.color, help="Hex color, e.g. #ffffff.")
    wm.add_argument("--opacity", default=defaults.opacity, type=int, help="0-100.")
    wm.add_argument("--font", default=defaults.font, help="Font family or .ttf path.")
    wm.add_argument("--preview", default=None, type=str, help="Also write the scaled preview to this path.")
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    if args.command == "remove-bg":
        return asyncio.run(_remove_backgrounds(args))
    return _watermark(args)


if __name__ == "__main__":
    raise SystemExit(main())
