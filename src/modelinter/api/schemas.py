"""Pydantic request/response schemas for the modelinter API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClassifyImageResponse(BaseModel):
    """Best-matching class for an image."""

    index: int = Field(description="Index of the highest-scoring class")
    label: str | None = Field(description="Label at that index, null if the label set has no such entry")


class DetectedObject(BaseModel):
    """A single detected object with relative bounding box."""

    score: float = Field(description="Detection confidence (0.0-1.0)")
    class_index: int
    label: str | None = None
    x_min: float = Field(description="Relative left edge (0.0-1.0)")
    y_min: float = Field(description="Relative top edge (0.0-1.0)")
    x_max: float = Field(description="Relative right edge (0.0-1.0)")
    y_max: float = Field(description="Relative bottom edge (0.0-1.0)")


class DetectObjectsResponse(BaseModel):
    """Response for the object detection endpoint."""

    threshold: float
    detections: list[DetectedObject]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Configuration and state of one task's graph."""

    task: str = Field(description="'classification' or 'detection'")
    status: str = Field(description="'loaded', 'configured', or 'not_configured'")
    input_node: str
    output_nodes: list[str]


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
