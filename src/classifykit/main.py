"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifykit.api.routes import router
from classifykit.config import get_settings
from classifykit.ml.inference import ClassifierWorker
from classifykit.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyKit (model=%s, device=%s, num_threads=%s, max_results=%s)",
        settings.model,
        settings.device,
        settings.num_threads,
        settings.max_results,
    )

    worker = ClassifierWorker(
        settings.model_config_for(),
        OnnxModelManager(settings),
        max_results=settings.max_results,
    )
    app.state.classifier_worker = worker

    logger.info("ClassifyKit ready")
    yield

    logger.info("Shutting down ClassifyKit")
    worker.shutdown()
    logger.info("ClassifyKit shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyKit",
        description="Image classification API over quantized and float mobile models",
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
