"""Face cropping engine.

Pipeline for one request:
    decode -> detect -> select largest face -> (optional) rotate to level the
    eyes, detect again, reselect -> crop rectangle -> crop + resize -> JPEG

``FaceCropper.process`` runs synchronously on the calling thread and only
checks its optional deadline on entry, never mid-pipeline.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from facecropper import imaging
from facecropper.detection import CascadeDetector, FaceDetector, YuNetDetector, select_best
from facecropper.errors import (
    ConstructionError,
    DeadlineExceeded,
    ModelPathRequired,
    NoFaceAfterAlignment,
    NoFaceFound,
)
from facecropper.geometry import MarginPolicy, MarginScalePolicy, PaddingPolicy, eye_angle

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facecropper.detection import FaceCandidate
    from facecropper.geometry import CropRect

logger = logging.getLogger(__name__)

DetectorKind = Literal["cascade", "yunet"]


@dataclass(frozen=True)
class CropOptions:
    """Immutable cropper configuration.

    ``padding_pct`` drives the cascade crop, ``margin_scale_w`` and
    ``margin_scale_h`` drive the YuNet crop. Negative margins clamp to 0.
    """

    score_threshold: float = 0.6
    nms_threshold: float = 0.3
    top_k: int = 5000
    output_width: int = 354
    output_height: int = 472
    padding_pct: float = 0.15
    margin_scale_w: float = 1.6
    margin_scale_h: float = 2.0
    align_by_eyes: bool = False

    def __post_init__(self) -> None:
        if self.output_width <= 0 or self.output_height <= 0:
            raise ConstructionError(f"output size must be positive, got {self.output_width}x{self.output_height}")
        for name in ("padding_pct", "margin_scale_w", "margin_scale_h"):
            if getattr(self, name) < 0:
                object.__setattr__(self, name, 0.0)

    @classmethod
    def for_cascade(cls, **overrides: object) -> CropOptions:
        return replace(cls(), **overrides)  # type: ignore[arg-type]

    @classmethod
    def for_yunet(cls, **overrides: object) -> CropOptions:
        defaults = cls(score_threshold=0.7, output_width=480, output_height=600, align_by_eyes=True)
        return replace(defaults, **overrides)  # type: ignore[arg-type]

    @classmethod
    def for_kind(cls, kind: DetectorKind, **overrides: object) -> CropOptions:
        if kind == "yunet":
            return cls.for_yunet(**overrides)
        return cls.for_cascade(**overrides)


def margin_policy_for(kind: str, options: CropOptions) -> MarginPolicy:
    """Return the crop geometry used with a detector variant."""
    if kind == "yunet":
        return MarginScalePolicy(
            margin_scale_w=options.margin_scale_w,
            margin_scale_h=options.margin_scale_h,
            output_width=options.output_width,
            output_height=options.output_height,
        )
    return PaddingPolicy(
        padding_pct=options.padding_pct,
        output_width=options.output_width,
        output_height=options.output_height,
    )


class FaceCropper:
    """Detects the most prominent face in an image and returns a fixed-size JPEG crop."""

    def __init__(self, detector: FaceDetector, options: CropOptions | None = None) -> None:
        self._detector = detector
        self._options = options if options is not None else CropOptions.for_kind(detector.kind)  # type: ignore[arg-type]
        self._policy = margin_policy_for(detector.kind, self._options)

    @property
    def options(self) -> CropOptions:
        return self._options

    @property
    def detector_kind(self) -> str:
        return self._detector.kind

    def process(self, image_bytes: bytes, deadline: float | None = None) -> bytes:
        """Crop the largest face in ``image_bytes`` and return it as JPEG bytes.

        ``deadline`` is a ``time.monotonic()`` value. It is checked once on
        entry; a call that has started runs to completion.

        Raises:
            InputError: If the bytes are empty or not a decodable image.
            NoFaceFound: If the first detection pass finds nothing.
            NoFaceAfterAlignment: If detection after eye alignment finds nothing.
            InvalidCropRect: If the crop collapses to a degenerate rectangle.
            DeadlineExceeded: If ``deadline`` has already passed.
            CodecError: If the image library fails to transform or encode.
        """
        if deadline is not None and time.monotonic() >= deadline:
            raise DeadlineExceeded("request deadline passed before cropping started")
        image = imaging.decode_image(image_bytes)
        image, rect = self.locate(image)
        out = imaging.crop_and_resize(image, rect, self._options.output_width, self._options.output_height)
        return imaging.encode_jpeg(out)

    def locate(self, image: NDArray[np.uint8]) -> tuple[NDArray[np.uint8], CropRect]:
        """Find the crop rectangle for a decoded image.

        Returns the image the rectangle applies to (the rotated copy when eye
        alignment ran) together with the rectangle.
        """
        candidates = self._detector.detect(image)
        if not candidates:
            raise NoFaceFound
        face = select_best(candidates)

        if self._options.align_by_eyes and face.left_eye is not None and face.right_eye is not None:
            angle = eye_angle(face.left_eye, face.right_eye)
            image, face = self._align(image, face, angle)

        height, width = image.shape[:2]
        rect = self._policy.crop_rect(face, width, height)
        logger.debug(
            "Crop (%d, %d, %d, %d) from %dx%d image",
            rect.x1,
            rect.y1,
            rect.x2,
            rect.y2,
            width,
            height,
        )
        return image, rect

    def _align(
        self, image: NDArray[np.uint8], face: FaceCandidate, angle: float
    ) -> tuple[NDArray[np.uint8], FaceCandidate]:
        center = (face.x + face.width / 2, face.y + face.height / 2)
        rotated = imaging.rotate_image(image, center, angle)

        candidates = self._detector.detect(rotated)
        if not candidates:
            raise NoFaceAfterAlignment
        aligned = select_best(candidates)
        logger.debug("Aligned by %.2f degrees about (%.1f, %.1f)", angle, center[0], center[1])
        return rotated, aligned

    def close(self) -> None:
        self._detector.close()


def detector_kind_for(model_path: str | Path) -> DetectorKind:
    """Guess the detector variant from a model file name."""
    return "yunet" if Path(model_path).suffix.lower() == ".onnx" else "cascade"


def create_detector(
    model_path: str | Path | None,
    options: CropOptions,
    kind: DetectorKind | None = None,
) -> FaceDetector:
    """Load a detector adapter for ``model_path``.

    Raises:
        ModelPathRequired: If ``model_path`` is empty.
        ModelLoadFailed: If the model file is missing or cannot be loaded.
    """
    if model_path is None or str(model_path) == "":
        logger.error("Empty detector model path")
        raise ModelPathRequired
    if kind is None:
        kind = detector_kind_for(model_path)
    if kind == "yunet":
        return YuNetDetector(
            model_path,
            score_threshold=options.score_threshold,
            nms_threshold=options.nms_threshold,
            top_k=options.top_k,
        )
    return CascadeDetector(model_path)


def create_cropper(
    model_path: str | Path | None,
    options: CropOptions | None = None,
    kind: DetectorKind | None = None,
) -> FaceCropper:
    """Build a ``FaceCropper`` around a freshly loaded detector.

    Unset ``options`` default to the detector variant's defaults.
    """
    if kind is None and model_path:
        kind = detector_kind_for(model_path)
    if options is None:
        options = CropOptions.for_kind(kind or "cascade")
    detector = create_detector(model_path, options, kind)
    return FaceCropper(detector, options)
