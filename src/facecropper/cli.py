"""Command line entry point.

Crops a single image, or every image under a directory into a mirrored
output tree. Per-file failures are logged and skipped.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from facecropper.cropper import CropOptions, create_cropper, detector_kind_for
from facecropper.errors import ConstructionError, CropperError
from facecropper.models import DEFAULT_MODELS, ModelStore

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from facecropper.cropper import FaceCropper

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".webp", ".tif", ".tiff"})


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.processed + self.failed


def iter_images(root: Path) -> Iterator[Path]:
    """Yield supported image files under ``root`` in a stable order."""
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
            yield path


def crop_file(cropper: FaceCropper, source: Path, target: Path) -> None:
    """Crop one file and write the JPEG to ``target``."""
    content = source.read_bytes()
    start = time.perf_counter()
    result = cropper.process(content)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(result)
    logger.info("%s -> %s (%.3fs)", source, target, time.perf_counter() - start)


def _target_for(source: Path, input_dir: Path, output_dir: Path, written: set[Path]) -> Path:
    """Map ``source`` to a .jpg path under ``output_dir`` not already used in this batch.

    ``a.png`` becomes ``a.jpg`` unless an earlier ``a.jpg`` claimed it, in which
    case the original extension is kept as ``a.png.jpg``.
    """
    relative = source.relative_to(input_dir)
    target = (output_dir / relative).with_suffix(".jpg")
    if target in written:
        fallback = (output_dir / relative).with_name(f"{source.name}.jpg")
        logger.warning("%s: %s already written, using %s", source, target.name, fallback.name)
        target = fallback
    written.add(target)
    return target


def crop_directory(cropper: FaceCropper, input_dir: Path, output_dir: Path) -> BatchResult:
    """Crop every image under ``input_dir`` into the same layout under ``output_dir``."""
    result = BatchResult()
    written: set[Path] = set()
    for source in iter_images(input_dir):
        target = _target_for(source, input_dir, output_dir, written)
        try:
            crop_file(cropper, source, target)
        except (CropperError, OSError) as exc:
            logger.warning("%s: skipped (%s)", source, exc)
            result.failed += 1
            continue
        result.processed += 1
    logger.info("Done: %d/%d images processed", result.processed, result.total)
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="facecropper",
        description="Crop the most prominent face in an image to a fixed-size JPEG.",
    )
    parser.add_argument("input", type=Path, help="image file or directory of images")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="output file (single image) or directory (batch); defaults to output_face.jpg or <input>_cropped",
    )
    parser.add_argument("--detector", choices=("cascade", "yunet"), help="detector variant (default: from model file)")
    parser.add_argument("--model", help="path to a Haar cascade .xml or YuNet .onnx model")
    parser.add_argument("--models-dir", default="models", help="download directory for registry models")
    parser.add_argument("--width", type=int, help="output width in pixels")
    parser.add_argument("--height", type=int, help="output height in pixels")
    parser.add_argument("--padding", type=float, help="padding fraction per side (cascade)")
    parser.add_argument("--margin-w", type=float, help="horizontal margin scale (yunet)")
    parser.add_argument("--margin-h", type=float, help="vertical margin scale (yunet)")
    parser.add_argument("--score-threshold", type=float, help="minimum detection score (yunet)")
    parser.add_argument(
        "--align",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="rotate to level the eyes before cropping (yunet)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def options_from_args(args: argparse.Namespace, kind: str) -> CropOptions:
    overrides = {
        field: value
        for field, value in (
            ("output_width", args.width),
            ("output_height", args.height),
            ("padding_pct", args.padding),
            ("margin_scale_w", args.margin_w),
            ("margin_scale_h", args.margin_h),
            ("score_threshold", args.score_threshold),
            ("align_by_eyes", args.align),
        )
        if value is not None
    }
    return CropOptions.for_kind(kind, **overrides)  # type: ignore[arg-type]


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        if args.model:
            model_path = Path(args.model)
            kind = args.detector or detector_kind_for(model_path)
        else:
            kind = args.detector or "cascade"
            model_path = ModelStore(args.models_dir).ensure_available(DEFAULT_MODELS[kind])
        options = options_from_args(args, kind)
        cropper = create_cropper(model_path, options, kind=kind)
    except (ConstructionError, KeyError) as exc:
        logger.error("Could not create cropper: %s", exc)
        return 2

    try:
        if args.input.is_dir():
            output_dir = args.output or args.input.with_name(f"{args.input.name}_cropped")
            result = crop_directory(cropper, args.input, output_dir)
            return 1 if result.failed else 0

        output = args.output or Path("output_face.jpg")
        try:
            crop_file(cropper, args.input, output)
        except (CropperError, OSError) as exc:
            logger.error("%s: %s", args.input, exc)
            return 1
        return 0
    finally:
        cropper.close()


if __name__ == "__main__":
    sys.exit(main())
