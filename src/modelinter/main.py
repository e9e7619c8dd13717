"""ASGI app for modelinter: wires graph sessions and the inference pool into FastAPI."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from modelinter.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modelinter.api.routes import router
from modelinter.config import get_settings
from modelinter.ml.inference import InferencePool
from modelinter.ml.model_manager import ModelTask, OnnxModelManager
from modelinter.ml.preprocessing import PillowImagePreprocessor

logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, settings: Settings) -> None:
    """Put settings, the worker pool, the graph manager and the image decoder on ``app.state``.

    Graphs are not read here; each one is loaded by the first request for its task.
    """
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.preprocessor = PillowImagePreprocessor(settings.max_image_pixels)


def _release_services(app: FastAPI) -> None:
    pool: InferencePool = app.state.inference_pool
    manager: OnnxModelManager = app.state.model_manager
    pool.shutdown()
    manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Attach services for the lifetime of the server and close sessions on exit."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    attach_services(app, settings)
    manager: OnnxModelManager = app.state.model_manager
    configured = [str(task) for task in ModelTask if manager.is_configured(task)]
    logger.info(
        "Serving tasks %s on %s with %d inference slot(s)",
        configured or "none",
        settings.device,
        settings.max_concurrent,
    )
    if not configured:
        logger.warning("No graph configured; inference endpoints will answer 503")

    yield

    logger.info("Releasing graph sessions and inference workers")
    _release_services(app)


def create_app() -> FastAPI:
    """Build the FastAPI app with CORS and the /api/v1 router."""
    application = FastAPI(
        title="modelinter",
        description="Single-image classification and object detection over ONNX graphs",
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
