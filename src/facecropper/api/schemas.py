"""Pydantic response schemas for the FaceCropper API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    detector: str = Field(description="Detector variant: 'cascade' or 'yunet'")
    output_width: int
    output_height: int
    align_by_eyes: bool
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
