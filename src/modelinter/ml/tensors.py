"""Checks for tensors crossing the runtime boundary.

Only two element kinds are fed to or fetched from a graph here: float32 scores
and boxes, and uint8 pixels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


class MalformedOutputError(ValueError):
    """A graph returned an output whose kind or shape cannot be interpreted."""


class TensorKind(StrEnum):
    FLOAT32 = "float32"
    UINT8 = "uint8"

    def matches(self, array: NDArray[Any]) -> bool:
        if self is TensorKind.FLOAT32:
            return bool(np.issubdtype(array.dtype, np.floating))
        return bool(array.dtype == np.uint8)


def expect_output(
    value: object,
    name: str,
    kind: TensorKind,
    shape: tuple[int | None, ...],
) -> NDArray[Any]:
    """Check a fetched output against an expected kind and shape.

    ``None`` in ``shape`` accepts any size along that axis.

    Raises:
        MalformedOutputError: If the output does not match.
    """
    array = np.asarray(value)
    if not kind.matches(array):
        raise MalformedOutputError(f"Output '{name}' has dtype {array.dtype}, expected {kind}")
    if array.ndim != len(shape) or any(
        want is not None and got != want for got, want in zip(array.shape, shape, strict=True)
    ):
        expected = ", ".join("N" if dim is None else str(dim) for dim in shape)
        raise MalformedOutputError(f"Output '{name}' has shape {list(array.shape)}, expected [{expected}]")
    return array
