"""Environment-based configuration for FaceCropper."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from facecropper.cropper import CropOptions


class Settings(BaseSettings):
    """Application settings loaded from FACECROPPER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACECROPPER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 1323

    # Detector
    detector: Literal["cascade", "yunet"] = "cascade"
    model_path: str | None = None
    model_name: str | None = None
    models_dir: str = "models"

    # Crop overrides (None = detector default)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    nms_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=1)
    output_width: int | None = Field(default=None, ge=1)
    output_height: int | None = Field(default=None, ge=1)
    padding_pct: float | None = None
    margin_scale_w: float | None = None
    margin_scale_h: float | None = None
    align_by_eyes: bool | None = None

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)
    request_timeout: float | None = Field(default=30.0, gt=0)

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)

    def crop_options(self) -> CropOptions:
        """Build crop options from the detector defaults plus any overrides."""
        overrides = {
            name: value
            for name in (
                "score_threshold",
                "nms_threshold",
                "top_k",
                "output_width",
                "output_height",
                "padding_pct",
                "margin_scale_w",
                "margin_scale_h",
                "align_by_eyes",
            )
            if (value := getattr(self, name)) is not None
        }
        return CropOptions.for_kind(self.detector, **overrides)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
