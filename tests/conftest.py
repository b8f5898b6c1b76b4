"""Shared fixtures: scripted detectors and synthetic images."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np
import pytest

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from numpy.typing import NDArray

    from facecropper.detection import FaceCandidate


class FakeDetector:
    """Detector that returns scripted results, one entry per ``detect`` call.

    The last entry repeats once the script is exhausted.
    """

    def __init__(self, *results: Sequence[FaceCandidate], kind: str = "cascade") -> None:
        self.kind = kind
        self._results = [list(r) for r in results]
        self.images: list[NDArray[np.uint8]] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.images)

    def detect(self, image: NDArray[np.uint8]) -> list[FaceCandidate]:
        self.images.append(image)
        if not self._results:
            return []
        if len(self._results) > 1:
            return self._results.pop(0)
        return list(self._results[0])

    def close(self) -> None:
        self.closed = True


def make_image(width: int = 640, height: int = 480) -> NDArray[np.uint8]:
    """Deterministic BGR gradient image."""
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    blue = np.tile(xs, (height, 1))
    green = np.tile(ys[:, None], (1, width))
    red = (blue + green) / 2
    return np.dstack([blue, green, red]).astype(np.uint8)


def encode(image: NDArray[np.uint8], ext: str = ".png") -> bytes:
    ok, buffer = cv2.imencode(ext, image)
    assert ok
    return buffer.tobytes()


@pytest.fixture()
def fake_detector() -> Callable[..., FakeDetector]:
    """Factory for scripted detectors."""
    return FakeDetector


@pytest.fixture()
def png_bytes() -> bytes:
    """640x480 PNG image."""
    return encode(make_image())


@pytest.fixture()
def jpeg_bytes() -> bytes:
    """640x480 JPEG image."""
    return encode(make_image(), ".jpg")
