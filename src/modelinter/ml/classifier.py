"""Single-image classification against a borrowed runtime session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np

from modelinter.ml.tensors import MalformedOutputError, TensorKind, expect_output

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class GraphSession(Protocol):
    """The part of ``onnxruntime.InferenceSession`` the inference functions use."""

    def run(self, output_names: Sequence[str] | None, input_feed: dict[str, Any]) -> Sequence[Any]: ...


def _as_input(image: bytes | bytearray | NDArray[Any]) -> NDArray[Any]:
    if isinstance(image, bytes | bytearray):
        return np.frombuffer(bytes(image), dtype=np.uint8)
    return np.asarray(image)


def first_argmax(scores: Sequence[float] | NDArray[np.floating[Any]]) -> int:
    """Index of the highest score; ties go to the lowest index.

    Raises:
        MalformedOutputError: If ``scores`` is empty.
    """
    if len(scores) == 0:
        raise MalformedOutputError("Score vector is empty")
    best_index = 0
    best_score = scores[0]
    for i in range(1, len(scores)):
        if scores[i] > best_score:
            best_index = i
            best_score = scores[i]
    return best_index


def classify_image(
    image: bytes | bytearray | NDArray[Any],
    session: GraphSession,
    input_name: str,
    output_name: str,
) -> int:
    """Run one forward pass of a classification graph and return the best class index.

    Args:
        image: Encoded image payload, fed as a 1-D uint8 tensor, or a prepared
            array fed unchanged.
        session: Live session built from a classification graph. Borrowed.
        input_name: Name of the graph's input node.
        output_name: Name of the graph's output node, shape [1, N] of scores.

    Returns:
        Index of the first maximum score.

    Raises:
        MalformedOutputError: If the output is not a non-empty [1, N] float tensor.
    """
    outputs = session.run([output_name], {input_name: _as_input(image)})
    scores = expect_output(outputs[0], output_name, TensorKind.FLOAT32, (1, None))[0]
    label_index = first_argmax(scores)
    logger.debug("Classified over %d scores: index=%d score=%.4f", len(scores), label_index, scores[label_index])
    return label_index
