"""Single-image object detection against a borrowed runtime session.

Works with graphs exported in the TF object-detection API layout: three
outputs holding boxes [1, N, 4] as (y_min, x_min, y_max, x_max), scores [1, N]
and classes [1, N], already sorted and suppressed by the graph.
"""

from __future__ import annotations

import logging
from dataclasses import astuple, dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from modelinter.ml.tensors import MalformedOutputError, TensorKind, expect_output

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from modelinter.ml.classifier import GraphSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Detection:
    """One detected object. Coordinates are relative (0.0-1.0)."""

    score: float
    class_index: int
    x_min: float
    y_min: float
    x_max: float
    y_max: float

    def as_tuple(self) -> tuple[float, int, float, float, float, float]:
        """Return the record as (score, class_index, x_min, y_min, x_max, y_max)."""
        return astuple(self)  # type: ignore[return-value]


def _check_image(image: NDArray[Any]) -> None:
    if image.dtype != np.uint8:
        raise ValueError(f"Detection input must be uint8, got {image.dtype}")
    if image.ndim != 4 or image.shape[0] != 1 or image.shape[3] != 3:
        raise ValueError(f"Detection input must have shape [1, H, W, 3], got {list(image.shape)}")


def detect_objects(
    image: NDArray[np.uint8],
    session: GraphSession,
    rate: float,
    input_name: str,
    boxes_name: str,
    scores_name: str,
    classes_name: str,
) -> list[Detection]:
    """Run one forward pass of a detection graph.

    Args:
        image: uint8 tensor of shape [1, H, W, 3].
        session: Live session built from a detection graph. Borrowed.
        rate: Score threshold; only detections scoring strictly above it are kept.
        input_name: Name of the graph's image input node.
        boxes_name: Output node holding [1, N, 4] boxes.
        scores_name: Output node holding [1, N] scores.
        classes_name: Output node holding [1, N] class indices.

    Returns:
        Detections in the order the graph produced them, boxes reordered to
        (x_min, y_min, x_max, y_max).

    Raises:
        ValueError: If ``rate`` is outside [0, 1] or the image is not a
            [1, H, W, 3] uint8 tensor.
        MalformedOutputError: If the outputs do not have the expected kinds
            and matching lengths, or a kept detection has a non-finite class.
    """
    if not 0.0 <= rate <= 1.0:
        raise ValueError(f"Score threshold must be within [0, 1], got {rate}")
    image = np.asarray(image)
    _check_image(image)

    outputs = session.run([boxes_name, scores_name, classes_name], {input_name: image})
    boxes = expect_output(outputs[0], boxes_name, TensorKind.FLOAT32, (1, None, 4))[0]
    scores = expect_output(outputs[1], scores_name, TensorKind.FLOAT32, (1, None))[0]
    classes = expect_output(outputs[2], classes_name, TensorKind.FLOAT32, (1, None))[0]
    if not len(boxes) == len(scores) == len(classes):
        raise MalformedOutputError(
            f"Output lengths disagree: boxes={len(boxes)} scores={len(scores)} classes={len(classes)}"
        )

    results: list[Detection] = []
    for i in range(len(scores)):
        if scores[i] > rate:
            if not np.isfinite(classes[i]):
                raise MalformedOutputError(f"Output '{classes_name}' has non-finite class {classes[i]} at {i}")
            y_min, x_min, y_max, x_max = (float(v) for v in boxes[i])
            results.append(
                Detection(
                    score=float(scores[i]),
                    class_index=int(classes[i]),
                    x_min=x_min,
                    y_min=y_min,
                    x_max=x_max,
                    y_max=y_max,
                )
            )

    logger.debug("Kept %d of %d detections above %.3f", len(results), len(scores), rate)
    return results
