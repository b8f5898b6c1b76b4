"""Exception hierarchy for the face cropper."""

from __future__ import annotations


class CropperError(Exception):
    """Base class for every error raised by the cropper."""


class ConstructionError(CropperError):
    """The cropper could not be built; no request can be processed."""


class ModelPathRequired(ConstructionError):
    def __init__(self) -> None:
        super().__init__("model path is required")


class ModelLoadFailed(ConstructionError):
    def __init__(self, path: str, reason: str | None = None) -> None:
        self.path = path
        message = f"could not load detector model from {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InputError(CropperError):
    """The request input is empty, undecodable or otherwise unusable."""


class NoFaceFound(CropperError):
    def __init__(self) -> None:
        super().__init__("no face found in image")


class NoFaceAfterAlignment(CropperError):
    def __init__(self) -> None:
        super().__init__("no face found after eye alignment")


class InvalidCropRect(CropperError):
    """The crop rectangle collapsed to an empty or near-empty region."""


class CodecError(CropperError):
    """Decode, warp, resize or encode failed inside the image library."""


class DeadlineExceeded(CropperError):
    """The request deadline passed before processing started."""
