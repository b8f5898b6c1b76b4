"""Tests for detector adapters and best-face selection."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from facecropper.detection import CascadeDetector, FaceCandidate, Point, YuNetDetector, select_best
from facecropper.errors import ModelLoadFailed, ModelPathRequired

HAAR_PATH = Path(cv2.data.haarcascades) / "haarcascade_frontalface_default.xml"


def _yunet_row(
    x: float, y: float, w: float, h: float, left: tuple[float, float], right: tuple[float, float]
) -> list[float]:
    return [x, y, w, h, *left, *right, 0, 0, 0, 0, 0, 0, 0.95]


# ---------------------------------------------------------------------------
# select_best
# ---------------------------------------------------------------------------


class TestSelectBest:
    def test_single_candidate(self) -> None:
        face = FaceCandidate(x=1, y=2, width=3, height=4)
        assert select_best([face]) is face

    @pytest.mark.parametrize("reverse", [False, True])
    def test_largest_area_wins_regardless_of_order(self, reverse: bool) -> None:
        small = FaceCandidate(x=0, y=0, width=10, height=10)
        large = FaceCandidate(x=50, y=50, width=10, height=15)
        candidates = [small, large]
        if reverse:
            candidates.reverse()
        assert select_best(candidates) is large

    def test_ties_keep_first(self) -> None:
        first = FaceCandidate(x=0, y=0, width=20, height=10)
        second = FaceCandidate(x=100, y=0, width=10, height=20)
        assert select_best([first, second]) is first

    def test_area_not_dimension(self) -> None:
        wide = FaceCandidate(x=0, y=0, width=100, height=2)
        square = FaceCandidate(x=0, y=0, width=20, height=20)
        assert select_best([wide, square]) is square

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError):
            select_best([])


# ---------------------------------------------------------------------------
# CascadeDetector
# ---------------------------------------------------------------------------


class TestCascadeDetector:
    @pytest.mark.parametrize("path", [None, ""])
    def test_empty_path_raises(self, path: str | None) -> None:
        with pytest.raises(ModelPathRequired):
            CascadeDetector(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ModelLoadFailed):
            CascadeDetector(tmp_path / "missing.xml")

    def test_unloadable_file_raises(self, tmp_path: Path) -> None:
        bogus = tmp_path / "bogus.xml"
        bogus.write_text("not a cascade")
        with pytest.raises(ModelLoadFailed):
            CascadeDetector(bogus)

    def test_blank_image_has_no_faces(self) -> None:
        detector = CascadeDetector(HAAR_PATH)
        image = np.full((240, 320, 3), 127, dtype=np.uint8)
        assert detector.detect(image) == []
        assert detector.kind == "cascade"

    def test_boxes_have_no_landmarks(self) -> None:
        detector = CascadeDetector(HAAR_PATH)
        classifier = MagicMock()
        classifier.detectMultiScale.return_value = np.array([[10, 20, 30, 40], [0, 0, 5, 5]])
        detector._classifier = classifier

        faces = detector.detect(np.zeros((100, 100, 3), dtype=np.uint8))

        assert faces == [
            FaceCandidate(x=10, y=20, width=30, height=40),
            FaceCandidate(x=0, y=0, width=5, height=5),
        ]
        assert not any(face.has_eyes for face in faces)


# ---------------------------------------------------------------------------
# YuNetDetector
# ---------------------------------------------------------------------------


@pytest.fixture()
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "yunet.onnx"
    path.write_bytes(b"onnx")
    return path


class TestYuNetDetector:
    def test_empty_path_raises(self) -> None:
        with pytest.raises(ModelPathRequired):
            YuNetDetector("")

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ModelLoadFailed):
            YuNetDetector(tmp_path / "missing.onnx")

    @patch("cv2.FaceDetectorYN")
    def test_create_failure_raises(self, mock_yn: MagicMock, model_file: Path) -> None:
        mock_yn.create.side_effect = cv2.error("bad model")
        with pytest.raises(ModelLoadFailed):
            YuNetDetector(model_file)

    @patch("cv2.FaceDetectorYN")
    def test_create_passes_thresholds(self, mock_yn: MagicMock, model_file: Path) -> None:
        YuNetDetector(model_file, score_threshold=0.5, nms_threshold=0.25, top_k=10)
        mock_yn.create.assert_called_once_with(str(model_file), "", (320, 320), 0.5, 0.25, 10)

    @patch("cv2.FaceDetectorYN")
    def test_detect_sets_input_size_and_parses_rows(self, mock_yn: MagicMock, model_file: Path) -> None:
        handle = mock_yn.create.return_value
        rows = np.array(
            [
                _yunet_row(10, 20, 30, 40, (15, 30), (32, 31)),
                _yunet_row(100, 100, 50, 60, (110, 120), (140, 118)),
            ],
            dtype=np.float32,
        )
        handle.detect.return_value = (1, rows)
        detector = YuNetDetector(model_file)

        faces = detector.detect(np.zeros((480, 640, 3), dtype=np.uint8))

        handle.setInputSize.assert_called_once_with((640, 480))
        assert len(faces) == 2
        assert faces[0] == FaceCandidate(
            x=10, y=20, width=30, height=40, left_eye=Point(15, 30), right_eye=Point(32, 31)
        )
        assert faces[1].has_eyes
        assert detector.kind == "yunet"

    @patch("cv2.FaceDetectorYN")
    def test_detect_without_faces_returns_empty(self, mock_yn: MagicMock, model_file: Path) -> None:
        mock_yn.create.return_value.detect.return_value = (1, None)
        detector = YuNetDetector(model_file)
        assert detector.detect(np.zeros((10, 10, 3), dtype=np.uint8)) == []

    @patch("cv2.FaceDetectorYN")
    def test_input_size_follows_each_image(self, mock_yn: MagicMock, model_file: Path) -> None:
        handle = mock_yn.create.return_value
        handle.detect.return_value = (1, None)
        detector = YuNetDetector(model_file)

        detector.detect(np.zeros((100, 200, 3), dtype=np.uint8))
        detector.detect(np.zeros((300, 50, 3), dtype=np.uint8))

        assert [c.args[0] for c in handle.setInputSize.call_args_list] == [(200, 100), (50, 300)]


# ---------------------------------------------------------------------------
# Concurrent detect calls
# ---------------------------------------------------------------------------


class _OverlapCounter:
    """Records how many calls are inside a section at the same time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inside = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self._inside += 1
            self.peak = max(self.peak, self._inside)

    def leave(self) -> None:
        with self._lock:
            self._inside -= 1


def _images(count: int) -> list[np.ndarray]:
    return [np.zeros((40 + i, 60 + 2 * i, 3), dtype=np.uint8) for i in range(count)]


class TestConcurrentDetect:
    @patch("cv2.FaceDetectorYN")
    def test_yunet_size_and_detect_are_not_interleaved(self, mock_yn: MagicMock, model_file: Path) -> None:
        handle = mock_yn.create.return_value
        counter = _OverlapCounter()
        events: list[tuple[str, tuple[int, int]]] = []

        def set_input_size(size: tuple[int, int]) -> None:
            counter.enter()
            events.append(("size", size))
            time.sleep(0.002)
            counter.leave()

        def detect(image: np.ndarray) -> tuple[int, None]:
            counter.enter()
            height, width = image.shape[:2]
            events.append(("detect", (width, height)))
            time.sleep(0.005)
            counter.leave()
            return 1, None

        handle.setInputSize.side_effect = set_input_size
        handle.detect.side_effect = detect
        detector = YuNetDetector(model_file)
        images = _images(16)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(detector.detect, images))

        assert results == [[]] * len(images)
        assert counter.peak == 1
        assert len(events) == 2 * len(images)
        for (first, size), (second, shape) in zip(events[::2], events[1::2], strict=True):
            assert (first, second) == ("size", "detect")
            assert size == shape

    def test_cascade_calls_do_not_overlap(self) -> None:
        detector = CascadeDetector(HAAR_PATH)
        counter = _OverlapCounter()

        def detect_multi_scale(gray: np.ndarray) -> tuple[()]:
            counter.enter()
            time.sleep(0.005)
            counter.leave()
            return ()

        classifier = MagicMock()
        classifier.detectMultiScale.side_effect = detect_multi_scale
        detector._classifier = classifier
        images = _images(16)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(detector.detect, images))

        assert results == [[]] * len(images)
        assert counter.peak == 1
        assert classifier.detectMultiScale.call_count == len(images)
