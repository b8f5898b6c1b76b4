"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facecropper.api.routes import router
from facecropper.config import get_settings
from facecropper.cropper import create_cropper
from facecropper.inference import CropWorkers
from facecropper.models import ModelStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the detector on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    options = settings.crop_options()
    logger.info(
        "Starting FaceCropper (detector=%s, output=%sx%s, align_by_eyes=%s, max_concurrent=%s)",
        settings.detector,
        options.output_width,
        options.output_height,
        options.align_by_eyes,
        settings.max_concurrent,
    )

    model_path = ModelStore(settings.models_dir).resolve(settings)
    cropper = create_cropper(model_path, options, kind=settings.detector)
    workers = CropWorkers(
        cropper,
        settings.max_concurrent,
        queue_timeout=settings.queue_timeout,
        request_timeout=settings.request_timeout,
    )
    app.state.workers = workers

    logger.info("FaceCropper ready")
    yield

    logger.info("Shutting down FaceCropper")
    workers.shutdown()
    cropper.close()
    logger.info("FaceCropper shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceCropper",
        description="Crop the most prominent face in an image to a fixed-size JPEG",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run("facecropper.main:app", host=settings.host, port=settings.port)
