"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status

from classifykit.api.middleware import verify_api_key
from classifykit.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    Location,
    ModelInfo,
    ModelsResponse,
    RecognitionOut,
)
from classifykit.ml.errors import ConfigurationError, EngineError, NotReadyError, ResourceLoadError
from classifykit.ml.preprocessing import decode_image
from classifykit.ml.registry import MODEL_REGISTRY, is_supported

if TYPE_CHECKING:
    from classifykit.config import Settings
    from classifykit.ml.image_classifier import Recognition
    from classifykit.ml.inference import ClassifierWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_worker(request: Request) -> ClassifierWorker:
    worker: ClassifierWorker = request.app.state.classifier_worker
    return worker


def _to_schema(recognition: Recognition) -> RecognitionOut:
    location = None
    if recognition.location is not None:
        box = recognition.location
        location = Location(left=box.left, top=box.top, right=box.right, bottom=box.bottom)
    return RecognitionOut(
        id=recognition.id,
        title=recognition.title,
        confidence=recognition.confidence,
        location=location,
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with ranked labels",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    rotation: Annotated[int, Form(description="Sensor rotation in degrees, a multiple of 90")] = 0,
) -> ClassifyImageResponse:
    """Classify an uploaded image and return the top recognitions."""
    settings = _get_settings(request)
    worker = _get_worker(request)

    if rotation % 90 != 0:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=f"Rotation must be a multiple of 90, got {rotation}")

    data = await file.read()
    try:
        image = decode_image(data, settings.max_file_size, settings.max_image_pixels)
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        recognitions = await worker.run(image, rotation)
    except ConfigurationError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (ResourceLoadError, NotReadyError) as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except EngineError as exc:
        logger.exception("Inference failed for %s", file.filename)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return ClassifyImageResponse(
        model=str(worker.config.variant),
        recognitions=[_to_schema(r) for r in recognitions],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    worker = _get_worker(request)
    return HealthResponse(
        status="ok",
        device=str(worker.config.device),
        model=str(worker.config.variant),
        model_loaded=worker.is_loaded,
        concurrent_requests=worker.active_count,
        queue_depth=worker.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status for the configured device."""
    config = _get_worker(request).config

    models: list[ModelInfo] = []
    for variant, spec in MODEL_REGISTRY.items():
        if variant == config.variant:
            model_status = "active"
        elif not is_supported(variant, config.device):
            model_status = "unsupported"
        else:
            model_status = "available"

        models.append(ModelInfo(name=str(variant), quantized=spec.quantized, status=model_status))

    return ModelsResponse(models=models)
