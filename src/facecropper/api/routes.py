"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.requests import ClientDisconnect

from facecropper.api.schemas import ErrorResponse, HealthResponse
from facecropper.errors import (
    CodecError,
    CropperError,
    DeadlineExceeded,
    InputError,
    InvalidCropRect,
    NoFaceAfterAlignment,
    NoFaceFound,
)
from facecropper.imaging import sniff_mime_type

if TYPE_CHECKING:
    from facecropper.config import Settings
    from facecropper.inference import CropWorkers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")

ACCEPTED_TYPES = frozenset({"image/png", "image/jpeg"})

_ERROR_STATUS: list[tuple[type[CropperError], int]] = [
    (InputError, status.HTTP_400_BAD_REQUEST),
    (NoFaceFound, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NoFaceAfterAlignment, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidCropRect, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DeadlineExceeded, status.HTTP_503_SERVICE_UNAVAILABLE),
    (CodecError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_workers(request: Request) -> CropWorkers:
    workers: CropWorkers = request.app.state.workers
    return workers


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def status_for(exc: CropperError) -> int:
    """Map a cropper error to its HTTP status code."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "/facecrop",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/jpeg": {}}},
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Crop the most prominent face in an image",
)
async def facecrop(request: Request) -> Response:
    """Read a raw PNG or JPEG body and return the face crop as JPEG."""
    settings = _get_settings(request)
    try:
        content = await request.body()
    except ClientDisconnect:
        return _error(status.HTTP_400_BAD_REQUEST, "request body is incomplete")

    if not content:
        return _error(status.HTTP_400_BAD_REQUEST, "request body is empty")
    if len(content) > settings.max_file_size:
        return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "request body is too large")

    mime_type = sniff_mime_type(content)
    if mime_type not in ACCEPTED_TYPES:
        return _error(status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, f"unsupported image type: {mime_type}")

    workers = _get_workers(request)
    try:
        result = await workers.crop(content)
    except TimeoutError:
        logger.warning("Crop request timed out waiting for a worker")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "server is busy, try again later")
    except CropperError as exc:
        status_code = status_for(exc)
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("Processing image failed: %s", exc)
        else:
            logger.info("Rejected image: %s", exc)
        return _error(status_code, str(exc))

    return Response(content=result, media_type=sniff_mime_type(result))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    workers = _get_workers(request)
    options = workers.cropper.options
    stats = workers.stats
    return HealthResponse(
        status="ok",
        detector=workers.cropper.detector_kind,
        output_width=options.output_width,
        output_height=options.output_height,
        align_by_eyes=options.align_by_eyes,
        concurrent_requests=stats.active,
        queue_depth=stats.waiting,
    )
