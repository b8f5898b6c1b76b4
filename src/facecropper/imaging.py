"""Image decode, transform and encode helpers built on OpenCV.

OpenCV failures surface as ``CodecError``; undecodable input surfaces as
``InputError``.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from facecropper.errors import CodecError, InputError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facecropper.geometry import CropRect

DEFAULT_MIME_TYPE = "application/octet-stream"


def decode_image(image_bytes: bytes) -> NDArray[np.uint8]:
    """Decode raw image bytes into an HxWx3 BGR uint8 array.

    Raises:
        InputError: If the bytes are empty, undecodable or zero-sized.
        CodecError: If OpenCV fails while decoding.
    """
    if not image_bytes:
        raise InputError("image is empty")
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error as exc:
        raise CodecError(f"decode failed: {exc}") from exc
    if image is None or image.size == 0:
        raise InputError("image could not be decoded")
    height, width = image.shape[:2]
    if width == 0 or height == 0:
        raise InputError(f"invalid image dimensions {width}x{height}")
    return image


def rotate_image(image: NDArray[np.uint8], center: tuple[float, float], angle: float) -> NDArray[np.uint8]:
    """Rotate ``image`` about ``center`` by ``angle`` degrees, keeping its size.

    Positive angles rotate counter-clockwise on screen, which levels a line
    that slopes down to the right by ``angle`` degrees.
    """
    height, width = image.shape[:2]
    try:
        matrix = cv2.getRotationMatrix2D(center, angle, 1.0)
        return cv2.warpAffine(image, matrix, (width, height))
    except cv2.error as exc:
        raise CodecError(f"rotation failed: {exc}") from exc


def crop_and_resize(image: NDArray[np.uint8], rect: CropRect, width: int, height: int) -> NDArray[np.uint8]:
    """Extract ``rect`` from ``image`` and resize it to ``width`` x ``height`` (Lanczos)."""
    region = image[rect.y1 : rect.y2, rect.x1 : rect.x2]
    try:
        return cv2.resize(region, (width, height), interpolation=cv2.INTER_LANCZOS4)
    except cv2.error as exc:
        raise CodecError(f"resize failed: {exc}") from exc


def encode_jpeg(image: NDArray[np.uint8]) -> bytes:
    """Encode an image as JPEG bytes."""
    try:
        ok, buffer = cv2.imencode(".jpg", image)
    except cv2.error as exc:
        raise CodecError(f"encode failed: {exc}") from exc
    if not ok:
        raise CodecError("encode failed")
    return buffer.tobytes()


def sniff_mime_type(content: bytes) -> str:
    """Return the MIME type of image bytes from their header, or ``application/octet-stream``."""
    if not content:
        return DEFAULT_MIME_TYPE
    try:
        with Image.open(io.BytesIO(content)) as img:
            image_format = img.format
    except (UnidentifiedImageError, OSError):
        return DEFAULT_MIME_TYPE
    if image_format is None:
        return DEFAULT_MIME_TYPE
    return Image.MIME.get(image_format, DEFAULT_MIME_TYPE)
