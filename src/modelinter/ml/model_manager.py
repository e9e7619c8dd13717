"""Model manager: locate, load, and cache the classification and detection sessions.

Graphs come from a local path or are downloaded from HuggingFace. Sessions are
built from the raw graph bytes and kept for the life of the process; callers
borrow them for individual inference calls.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from modelinter.ml.loaders import load_model, load_txt_labels

if TYPE_CHECKING:
    from modelinter.config import Settings

logger = logging.getLogger(__name__)


class ModelTask(StrEnum):
    CLASSIFICATION = "classification"
    DETECTION = "detection"


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def is_configured(self, task: ModelTask) -> bool:
        """Return whether a graph source is configured for the task."""
        ...

    def ensure_available(self, task: ModelTask) -> Path:
        """Return a local path to the task's graph, downloading it if needed."""
        ...

    def get_session(self, task: ModelTask) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_labels(self, task: ModelTask) -> list[str]:
        """Return the task's label set."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of tasks with a live session."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions and labels."""
        ...


# ---------------------------------------------------------------------------
# Session construction
# ---------------------------------------------------------------------------


def build_providers(settings: Settings) -> list[str | tuple[str, dict[str, object]]]:
    device = settings.device
    if device == "cuda":
        return [
            (
                "CUDAExecutionProvider",
                {
                    "device_id": 0,
                    "gpu_mem_limit": settings.gpu_mem_limit,
                    "arena_extend_strategy": "kSameAsRequested",
                },
            ),
            "CPUExecutionProvider",
        ]
    if device == "openvino":
        return [
            ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
            "CPUExecutionProvider",
        ]
    return ["CPUExecutionProvider"]


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True

    if settings.device == "openvino":
        # OpenVINO does its own graph optimization
        from onnxruntime import GraphOptimizationLevel

        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


def create_session(model_bytes: bytes, settings: Settings) -> InferenceSession:
    """Import a serialized graph and return an executable session.

    Malformed bytes are rejected by ONNX Runtime with its own exception type.
    """
    return InferenceSession(
        model_bytes,
        sess_options=build_session_options(settings),
        providers=build_providers(settings),
    )


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Loads and caches one session and one label set per task."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[ModelTask, InferenceSession] = {}
        self._labels: dict[ModelTask, list[str]] = {}
        self._model_paths: dict[ModelTask, Path] = {}

    # -- Public API ---------------------------------------------------------

    def is_configured(self, task: ModelTask) -> bool:
        path, repo, filename = self._source(task)
        return path is not None or (repo is not None and filename is not None)

    def ensure_available(self, task: ModelTask) -> Path:
        """Return the configured graph path, downloading from HuggingFace if that is the source."""
        path, repo, filename = self._source(task)
        if path is not None:
            return Path(path)
        if repo is None or filename is None:
            raise RuntimeError(
                f"No {task} model configured; set MODELINTER_{task.upper()}_MODEL_PATH "
                f"or MODELINTER_{task.upper()}_MODEL_REPO and _MODEL_FILENAME"
            )

        cached = self._model_paths.get(task)
        if cached is not None and cached.exists():
            return cached

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo,
                filename=filename,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[task] = downloaded
        logger.info("Downloaded %s model to %s", task, downloaded)
        return downloaded

    def get_session(self, task: ModelTask) -> InferenceSession:
        """Return the cached session for a task, creating it on first use."""
        with self._lock:
            cached = self._sessions.get(task)
            if cached is not None:
                return cached

        model_path = self.ensure_available(task)
        session = create_session(load_model(model_path), self._settings)

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(task)
            if existing is not None:
                return existing
            self._sessions[task] = session
            logger.info("Loaded %s session from %s", task, model_path)
            return session

    def get_labels(self, task: ModelTask) -> list[str]:
        """Return the cached label set for a task; empty when none is configured."""
        with self._lock:
            cached = self._labels.get(task)
            if cached is not None:
                return cached

        labels_path = self._labels_path(task)
        labels = load_txt_labels(labels_path) if labels_path is not None else []

        with self._lock:
            self._labels.setdefault(task, labels)
            if labels_path is not None:
                logger.info("Loaded %d %s labels from %s", len(labels), task, labels_path)
            return self._labels[task]

    def get_loaded_models(self) -> list[str]:
        """Return names of tasks with a live session."""
        with self._lock:
            return [str(task) for task in self._sessions]

    def shutdown(self) -> None:
        """Clear all cached sessions and labels."""
        with self._lock:
            self._sessions.clear()
            self._labels.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _source(self, task: ModelTask) -> tuple[str | None, str | None, str | None]:
        s = self._settings
        if task is ModelTask.CLASSIFICATION:
            return s.classification_model_path, s.classification_model_repo, s.classification_model_filename
        return s.detection_model_path, s.detection_model_repo, s.detection_model_filename

    def _labels_path(self, task: ModelTask) -> str | None:
        if task is ModelTask.CLASSIFICATION:
            return self._settings.classification_labels_path
        return self._settings.detection_labels_path
