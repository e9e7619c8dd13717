"""Tests for single-image object detection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from modelinter.ml.detector import Detection, detect_objects
from modelinter.ml.tensors import MalformedOutputError

if TYPE_CHECKING:
    from collections.abc import Callable
    from unittest.mock import MagicMock

NODES = ("image_tensor", "detection_boxes", "detection_scores", "detection_classes")


def _outputs(
    boxes: list[list[float]],
    scores: list[float],
    classes: list[float],
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    return (
        np.asarray(boxes, dtype=np.float32).reshape(1, len(boxes), 4),
        np.asarray([scores], dtype=np.float32),
        np.asarray([classes], dtype=np.float32),
    )


class TestDetection:
    def test_as_tuple_field_order(self) -> None:
        det = Detection(score=0.9, class_index=2, x_min=0.1, y_min=0.2, x_max=0.3, y_max=0.4)
        assert det.as_tuple() == (0.9, 2, 0.1, 0.2, 0.3, 0.4)

    def test_frozen(self) -> None:
        det = Detection(score=0.9, class_index=2, x_min=0.1, y_min=0.2, x_max=0.3, y_max=0.4)
        with pytest.raises(AttributeError):
            det.score = 0.1  # type: ignore[misc]


class TestDetectObjects:
    def test_single_detection_above_threshold(
        self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session(
            *_outputs(
                [[0.1, 0.2, 0.5, 0.6], [0.0, 0.0, 1.0, 1.0]],
                [0.95, 0.4],
                [1.0, 3.0],
            )
        )

        results = detect_objects(image_tensor, session, 0.9, *NODES)

        assert len(results) == 1
        assert results[0].score == pytest.approx(0.95)
        assert results[0].class_index == 1

    def test_boxes_reordered_to_xy(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        # Runtime layout is (y_min, x_min, y_max, x_max).
        session = make_session(*_outputs([[0.1, 0.2, 0.5, 0.75]], [0.8], [4.0]))

        (det,) = detect_objects(image_tensor, session, 0.5, *NODES)

        assert det.as_tuple()[2:] == pytest.approx((0.2, 0.1, 0.75, 0.5))
        assert (det.x_min, det.y_min, det.x_max, det.y_max) == pytest.approx((0.2, 0.1, 0.75, 0.5))

    def test_threshold_is_strict(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]] * 3, [0.75, 0.5, 0.25], [1.0, 2.0, 3.0]))

        results = detect_objects(image_tensor, session, 0.5, *NODES)

        assert [d.class_index for d in results] == [1]

    def test_rate_one_returns_nothing(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]] * 2, [1.0, 0.99], [1.0, 2.0]))
        assert detect_objects(image_tensor, session, 1.0, *NODES) == []

    def test_rate_zero_keeps_all_positive_scores(
        self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]] * 3, [0.3, 0.01, 0.0], [1.0, 2.0, 3.0]))
        results = detect_objects(image_tensor, session, 0.0, *NODES)
        assert [d.class_index for d in results] == [1, 2]

    def test_runtime_order_preserved(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]] * 3, [0.6, 0.9, 0.7], [5.0, 6.0, 7.0]))

        results = detect_objects(image_tensor, session, 0.5, *NODES)

        assert [d.class_index for d in results] == [5, 6, 7]

    def test_no_detections(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        session = make_session(
            np.zeros((1, 0, 4), dtype=np.float32),
            np.zeros((1, 0), dtype=np.float32),
            np.zeros((1, 0), dtype=np.float32),
        )
        assert detect_objects(image_tensor, session, 0.5, *NODES) == []

    def test_fetches_outputs_in_one_run(
        self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]], [0.9], [1.0]))

        detect_objects(image_tensor, session, 0.5, "in", "b", "s", "c")

        session.run.assert_called_once()
        output_names, feed = session.run.call_args.args
        assert output_names == ["b", "s", "c"]
        assert feed["in"] is image_tensor

    def test_result_fields_are_python_numbers(
        self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session(*_outputs([[0.1, 0.2, 0.3, 0.4]], [0.9], [2.0]))
        (det,) = detect_objects(image_tensor, session, 0.5, *NODES)
        assert type(det.score) is float
        assert type(det.class_index) is int

    @pytest.mark.parametrize("rate", [-0.1, 1.5])
    def test_rate_out_of_range(
        self, rate: float, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session()
        with pytest.raises(ValueError, match="threshold"):
            detect_objects(image_tensor, session, rate, *NODES)
        session.run.assert_not_called()

    def test_non_uint8_input_rejected(self, make_session: Callable[..., MagicMock]) -> None:
        session = make_session()
        with pytest.raises(ValueError, match="uint8"):
            detect_objects(np.zeros((1, 4, 4, 3), dtype=np.float32), session, 0.5, *NODES)
        session.run.assert_not_called()

    def test_unbatched_input_rejected(self, make_session: Callable[..., MagicMock]) -> None:
        session = make_session()
        with pytest.raises(ValueError, match="shape"):
            detect_objects(np.zeros((4, 4, 3), dtype=np.uint8), session, 0.5, *NODES)

    def test_mismatched_lengths_raise(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        session = make_session(
            np.zeros((1, 2, 4), dtype=np.float32),
            np.asarray([[0.9, 0.8, 0.7]], dtype=np.float32),
            np.asarray([[1.0, 2.0]], dtype=np.float32),
        )
        with pytest.raises(MalformedOutputError, match="disagree"):
            detect_objects(image_tensor, session, 0.5, *NODES)

    def test_bad_box_shape_raises(self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray) -> None:
        session = make_session(
            np.zeros((1, 2, 5), dtype=np.float32),
            np.zeros((1, 2), dtype=np.float32),
            np.zeros((1, 2), dtype=np.float32),
        )
        with pytest.raises(MalformedOutputError, match="detection_boxes"):
            detect_objects(image_tensor, session, 0.5, *NODES)

    @pytest.mark.parametrize("bad_class", [float("nan"), float("inf")])
    def test_non_finite_class_raises(
        self, bad_class: float, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]], [0.9], [bad_class]))
        with pytest.raises(MalformedOutputError, match="non-finite"):
            detect_objects(image_tensor, session, 0.5, *NODES)

    def test_non_finite_class_below_threshold_ignored(
        self, make_session: Callable[..., MagicMock], image_tensor: np.ndarray
    ) -> None:
        session = make_session(*_outputs([[0, 0, 1, 1]] * 2, [0.9, 0.1], [2.0, float("nan")]))
        results = detect_objects(image_tensor, session, 0.5, *NODES)
        assert [d.class_index for d in results] == [2]
