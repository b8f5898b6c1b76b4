"""Face detector adapters and best-face selection.

Two adapters wrap OpenCV detectors behind the same ``detect`` contract:

* ``CascadeDetector``: Haar cascade classifier, boxes only.
* ``YuNetDetector``: YuNet neural detector, boxes plus eye landmarks.

Both hold a long-lived OpenCV handle that is not safe for concurrent use, so
every ``detect`` call runs under the adapter's own lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import cv2

from facecropper.errors import ModelLoadFailed, ModelPathRequired

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class FaceCandidate:
    """One detected face: top-left box plus optional eye landmarks.

    ``left_eye`` is the eye nearer the left edge of the image.
    """

    x: float
    y: float
    width: float
    height: float
    left_eye: Point | None = None
    right_eye: Point | None = None

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def has_eyes(self) -> bool:
        return self.left_eye is not None and self.right_eye is not None


class FaceDetector(Protocol):
    """Protocol for face detection adapters."""

    @property
    def kind(self) -> str:
        """Return the detector variant name ("cascade" or "yunet")."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[FaceCandidate]:
        """Detect faces in an image.

        Args:
            image: HxWx3 BGR uint8 array.

        Returns:
            Every detected face; an empty list when nothing was found.
        """
        ...

    def close(self) -> None:
        """Release the underlying detector handle."""
        ...


def select_best(candidates: Sequence[FaceCandidate]) -> FaceCandidate:
    """Return the candidate with the largest box area.

    Ties keep the earliest candidate.

    Raises:
        ValueError: If ``candidates`` is empty.
    """
    if not candidates:
        raise ValueError("select_best() requires at least one candidate")
    best = candidates[0]
    best_area = best.area
    for candidate in candidates[1:]:
        area = candidate.area
        if area > best_area:
            best = candidate
            best_area = area
    return best


def _check_model_path(model_path: str | Path | None) -> Path:
    if model_path is None or str(model_path) == "":
        logger.error("Empty detector model path")
        raise ModelPathRequired
    path = Path(model_path)
    if not path.is_file():
        logger.error("Detector model not found: %s", path)
        raise ModelLoadFailed(str(path), "file not found")
    return path


class CascadeDetector:
    """Haar cascade adapter. Returns boxes without landmarks."""

    kind = "cascade"

    def __init__(self, model_path: str | Path | None) -> None:
        path = _check_model_path(model_path)
        classifier = cv2.CascadeClassifier()
        try:
            loaded = classifier.load(str(path))
        except cv2.error as exc:
            logger.error("Could not load Haar cascade from %s: %s", path, exc)
            raise ModelLoadFailed(str(path), str(exc)) from exc
        if not loaded:
            logger.error("Could not load Haar cascade from %s", path)
            raise ModelLoadFailed(str(path))
        self._classifier = classifier
        self._lock = threading.Lock()
        logger.info("Loaded Haar cascade from %s", path)

    def detect(self, image: NDArray[np.uint8]) -> list[FaceCandidate]:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        with self._lock:
            rects = self._classifier.detectMultiScale(gray)
        faces = [FaceCandidate(x=int(x), y=int(y), width=int(w), height=int(h)) for x, y, w, h in rects]
        logger.debug("Cascade found %d face(s)", len(faces))
        return faces

    def close(self) -> None:
        with self._lock:
            self._classifier = None


class YuNetDetector:
    """YuNet adapter. Returns boxes plus both eye landmarks.

    The YuNet input size must match the image being processed, so resizing
    the network input and running detection form one critical section.
    """

    kind = "yunet"

    # Row layout: x, y, w, h, then (x, y) pairs for the eye shown on the
    # image left, the eye shown on the image right, nose tip, mouth corners,
    # and finally the score.
    _LEFT_EYE = slice(4, 6)
    _RIGHT_EYE = slice(6, 8)

    def __init__(
        self,
        model_path: str | Path | None,
        score_threshold: float = 0.7,
        nms_threshold: float = 0.3,
        top_k: int = 5000,
    ) -> None:
        path = _check_model_path(model_path)
        try:
            detector = cv2.FaceDetectorYN.create(
                str(path),
                "",
                (320, 320),
                score_threshold,
                nms_threshold,
                top_k,
            )
        except cv2.error as exc:
            logger.error("Could not load YuNet model from %s: %s", path, exc)
            raise ModelLoadFailed(str(path), str(exc)) from exc
        self._detector = detector
        self._lock = threading.Lock()
        logger.info(
            "Loaded YuNet from %s (score=%s, nms=%s, top_k=%s)",
            path,
            score_threshold,
            nms_threshold,
            top_k,
        )

    def detect(self, image: NDArray[np.uint8]) -> list[FaceCandidate]:
        height, width = image.shape[:2]
        with self._lock:
            self._detector.setInputSize((width, height))
            _, rows = self._detector.detect(image)
        if rows is None:
            logger.debug("YuNet found no faces")
            return []

        faces: list[FaceCandidate] = []
        for row in rows:
            left_x, left_y = row[self._LEFT_EYE]
            right_x, right_y = row[self._RIGHT_EYE]
            faces.append(
                FaceCandidate(
                    x=float(row[0]),
                    y=float(row[1]),
                    width=float(row[2]),
                    height=float(row[3]),
                    left_eye=Point(float(left_x), float(left_y)),
                    right_eye=Point(float(right_x), float(right_y)),
                )
            )
        logger.debug("YuNet found %d face(s)", len(faces))
        return faces

    def close(self) -> None:
        with self._lock:
            self._detector = None
