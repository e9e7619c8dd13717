"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, status

from modelinter.api.middleware import verify_api_key
from modelinter.api.schemas import (
    ClassifyImageResponse,
    DetectedObject,
    DetectObjectsResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from modelinter.ml.classifier import classify_image
from modelinter.ml.detector import Detection, detect_objects
from modelinter.ml.model_manager import ModelTask
from modelinter.ml.preprocessing import InvalidImageError
from modelinter.ml.tensors import MalformedOutputError

if TYPE_CHECKING:
    from collections.abc import Callable

    from modelinter.config import Settings
    from modelinter.ml.inference import InferencePool
    from modelinter.ml.model_manager import ModelManager
    from modelinter.ml.preprocessing import PillowImagePreprocessor

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_INFERENCE_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _get_preprocessor(request: Request) -> PillowImagePreprocessor:
    preprocessor: PillowImagePreprocessor = request.app.state.preprocessor
    return preprocessor


def _resolve_label(labels: list[str], index: int) -> str | None:
    return labels[index] if 0 <= index < len(labels) else None


async def _read_upload(file: UploadFile, settings: Settings) -> bytes:
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"Upload exceeds {settings.max_file_size} bytes",
        )
    return data


def _require_task(manager: ModelManager, task: ModelTask) -> None:
    if not manager.is_configured(task):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No {task} model configured",
        )


def _classify(manager: ModelManager, settings: Settings, data: bytes) -> tuple[int, list[str]]:
    session = manager.get_session(ModelTask.CLASSIFICATION)
    index = classify_image(
        data,
        session,
        settings.classification_input_node,
        settings.classification_output_node,
    )
    return index, manager.get_labels(ModelTask.CLASSIFICATION)


def _detect(
    manager: ModelManager,
    preprocessor: PillowImagePreprocessor,
    settings: Settings,
    data: bytes,
    threshold: float,
) -> tuple[list[Detection], list[str]]:
    image = preprocessor.to_detection_tensor(preprocessor.decode_image(data))
    session = manager.get_session(ModelTask.DETECTION)
    detections = detect_objects(
        image,
        session,
        threshold,
        settings.detection_input_node,
        settings.detection_boxes_node,
        settings.detection_scores_node,
        settings.detection_classes_node,
    )
    return detections, manager.get_labels(ModelTask.DETECTION)


async def _run_inference(pool: InferencePool, func: Callable[..., T], *args: object) -> T:
    try:
        return await pool.run(func, *args)
    # TimeoutError is an OSError subclass, so it must be matched first.
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from None
    except OSError as exc:
        logger.exception("Cannot read model files")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Model files unavailable: {exc}",
        ) from exc
    except MalformedOutputError as exc:
        logger.error("Model returned malformed output: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except InvalidImageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ValueError as exc:
        # ONNX Runtime raises ValueError for feeds that do not match the graph,
        # e.g. a configured input node name the graph does not have.
        logger.exception("Graph rejected the inference request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Inference failed: {exc}",
        ) from exc


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_INFERENCE_RESPONSES,
    summary="Classify an image",
)
async def classify(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Return the best-matching class for an uploaded image.

    The upload is fed to the graph as raw bytes; the graph decodes it.
    """
    settings = _get_settings(request)
    manager = _get_model_manager(request)
    _require_task(manager, ModelTask.CLASSIFICATION)

    data = await _read_upload(file, settings)
    index, labels = await _run_inference(_get_inference_pool(request), _classify, manager, settings, data)
    return ClassifyImageResponse(index=index, label=_resolve_label(labels, index))


@router.post(
    "/detect-objects",
    response_model=DetectObjectsResponse,
    responses=_INFERENCE_RESPONSES,
    summary="Detect objects in an image",
)
async def detect(
    request: Request,
    file: UploadFile,
    threshold: Annotated[float | None, Query(ge=0.0, le=1.0)] = None,
) -> DetectObjectsResponse:
    """Return every object scoring above the threshold, in model order."""
    settings = _get_settings(request)
    manager = _get_model_manager(request)
    _require_task(manager, ModelTask.DETECTION)

    rate = settings.detection_threshold if threshold is None else threshold
    data = await _read_upload(file, settings)
    detections, labels = await _run_inference(
        _get_inference_pool(request),
        _detect,
        manager,
        _get_preprocessor(request),
        settings,
        data,
        rate,
    )
    return DetectObjectsResponse(
        threshold=rate,
        detections=[
            DetectedObject(
                score=d.score,
                class_index=d.class_index,
                label=_resolve_label(labels, d.class_index),
                x_min=d.x_min,
                y_min=d.y_min,
                x_max=d.x_max,
                y_max=d.y_max,
            )
            for d in detections
        ],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List configured models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the classification and detection graphs and their state."""
    settings = _get_settings(request)
    manager = _get_model_manager(request)
    loaded = set(manager.get_loaded_models())

    nodes = {
        ModelTask.CLASSIFICATION: (
            settings.classification_input_node,
            [settings.classification_output_node],
        ),
        ModelTask.DETECTION: (
            settings.detection_input_node,
            [settings.detection_boxes_node, settings.detection_scores_node, settings.detection_classes_node],
        ),
    }

    models: list[ModelInfo] = []
    for task, (input_node, output_nodes) in nodes.items():
        if task in loaded:
            model_status = "loaded"
        elif manager.is_configured(task):
            model_status = "configured"
        else:
            model_status = "not_configured"
        models.append(
            ModelInfo(
                task=str(task),
                status=model_status,
                input_node=input_node,
                output_nodes=output_nodes,
            )
        )

    return ModelsResponse(models=models)
