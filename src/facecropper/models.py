"""Model registry and resolution.

Resolves the detector model file for a configuration: an explicit path wins,
otherwise a registry entry is taken from the OpenCV install (Haar cascades)
or downloaded once from HuggingFace (YuNet).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError

from facecropper.errors import ModelLoadFailed

if TYPE_CHECKING:
    from facecropper.config import Settings

logger = logging.getLogger(__name__)


class ModelSource(StrEnum):
    OPENCV = "opencv"
    HUGGINGFACE = "huggingface"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single detector model."""

    name: str
    detector: str
    filename: str
    source: ModelSource
    repo_id: str | None = None


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "haarcascade_frontalface_default": ModelSpec(
        name="haarcascade_frontalface_default",
        detector="cascade",
        filename="haarcascade_frontalface_default.xml",
        source=ModelSource.OPENCV,
    ),
    "haarcascade_frontalface_alt2": ModelSpec(
        name="haarcascade_frontalface_alt2",
        detector="cascade",
        filename="haarcascade_frontalface_alt2.xml",
        source=ModelSource.OPENCV,
    ),
    "yunet_2023mar": ModelSpec(
        name="yunet_2023mar",
        detector="yunet",
        filename="face_detection_yunet_2023mar.onnx",
        source=ModelSource.HUGGINGFACE,
        repo_id="opencv/face_detection_yunet",
    ),
}

DEFAULT_MODELS: dict[str, str] = {
    "cascade": "haarcascade_frontalface_default",
    "yunet": "yunet_2023mar",
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


class ModelStore:
    """Locates registry models on disk, downloading them when needed."""

    def __init__(self, models_dir: str | Path) -> None:
        self._models_dir = Path(models_dir)
        self._lock = threading.Lock()
        self._paths: dict[str, Path] = {}

    def ensure_available(self, model_name: str) -> Path:
        """Return a local path for ``model_name``, downloading it if necessary.

        Raises:
            KeyError: If ``model_name`` is not registered.
            ModelLoadFailed: If the download fails.
        """
        spec = get_spec(model_name)
        with self._lock:
            cached = self._paths.get(model_name)
            if cached is not None and cached.exists():
                return cached

            if spec.source is ModelSource.OPENCV:
                path = Path(cv2.data.haarcascades) / spec.filename
            else:
                try:
                    self._models_dir.mkdir(parents=True, exist_ok=True)
                    path = Path(
                        hf_hub_download(
                            repo_id=spec.repo_id,
                            filename=spec.filename,
                            local_dir=str(self._models_dir),
                        )
                    )
                except (HfHubHTTPError, LocalEntryNotFoundError, OSError) as exc:
                    logger.error("Download of %s failed: %s", model_name, exc)
                    raise ModelLoadFailed(spec.filename, f"download failed: {exc}") from exc
                logger.info("Downloaded %s to %s", model_name, path)
            self._paths[model_name] = path
            return path

    def resolve(self, settings: Settings) -> Path:
        """Return the model path configured by ``settings``."""
        if settings.model_path:
            return Path(settings.model_path)
        model_name = settings.model_name or DEFAULT_MODELS[settings.detector]
        spec = get_spec(model_name)
        if spec.detector != settings.detector:
            raise ValueError(f"Model '{model_name}' is a {spec.detector} model, not {settings.detector}")
        return self.ensure_available(model_name)
