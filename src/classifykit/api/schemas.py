"""Pydantic request/response schemas for the ClassifyKit API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Location(BaseModel):
    """Bounding box of a recognized object, in source image pixels."""

    left: float
    top: float
    right: float
    bottom: float


class RecognitionOut(BaseModel):
    """A single ranked classification result."""

    id: str = Field(description="Class label, identifying the class rather than the instance")
    title: str
    confidence: float = Field(ge=0.0, le=1.0)
    location: Location | None = None


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    model: str
    recognitions: list[RecognitionOut]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    device: str
    model: str
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    quantized: bool
    status: str = Field(description="Model status: 'active', 'available', or 'unsupported'")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
