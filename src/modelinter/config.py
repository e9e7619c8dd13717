"""Environment-based configuration for modelinter."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from MODELINTER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MODELINTER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # Root logging level applied at startup
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Classification graph: local path, or a file in a HuggingFace repo
    classification_model_path: str | None = None
    classification_model_repo: str | None = None
    classification_model_filename: str | None = None
    classification_labels_path: str | None = None
    classification_input_node: str = "input"
    classification_output_node: str = "output"

    # Detection graph
    detection_model_path: str | None = None
    detection_model_repo: str | None = None
    detection_model_filename: str | None = None
    detection_labels_path: str | None = None
    detection_input_node: str = "image_tensor"
    detection_boxes_node: str = "detection_boxes"
    detection_scores_node: str = "detection_scores"
    detection_classes_node: str = "detection_classes"
    detection_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # Where downloaded graphs are stored
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
