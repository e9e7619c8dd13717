"""Shared fixtures: fake runtime sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import numpy as np
import pytest

if TYPE_CHECKING:
    from collections.abc import Callable


def _make_session(*outputs: Any) -> MagicMock:
    session = MagicMock()
    session.run.return_value = [np.asarray(o) for o in outputs]
    return session


@pytest.fixture()
def make_session() -> Callable[..., MagicMock]:
    """Factory for mock sessions whose ``run`` yields the given outputs."""
    return _make_session


@pytest.fixture()
def image_tensor() -> np.ndarray:
    """A 1x4x6x3 uint8 detection input."""
    return np.zeros((1, 4, 6, 3), dtype=np.uint8)
