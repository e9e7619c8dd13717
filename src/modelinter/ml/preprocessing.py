"""Image decoding for the detection path.

Turns uploaded image bytes into the uint8 [1, H, W, 3] tensor a detection
graph takes as input.
"""

from __future__ import annotations

import io
import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class InvalidImageError(ValueError):
    """Uploaded bytes are not a decodable image, or the image is too large."""


class PillowImagePreprocessor:
    """Decodes images with Pillow and enforces a pixel-count limit."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any format Pillow reads).

        Returns:
            HxWx3 RGB uint8 numpy array, EXIF orientation applied.

        Raises:
            InvalidImageError: If the image cannot be decoded or exceeds the pixel limit.
        """
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", Image.DecompressionBombWarning)
                image = Image.open(io.BytesIO(image_bytes))
                width, height = image.size
                if width * height > self._max_image_pixels:
                    raise InvalidImageError(
                        f"Image has {width * height} pixels, limit is {self._max_image_pixels}"
                    )
                image = ImageOps.exif_transpose(image)
                rgb = image.convert("RGB")
        # UnidentifiedImageError and truncated-file errors are both OSErrors.
        except (OSError, Image.DecompressionBombError, Image.DecompressionBombWarning) as exc:
            raise InvalidImageError(f"Cannot decode image: {exc}") from exc

        array = np.asarray(rgb, dtype=np.uint8)
        logger.debug("Decoded image %dx%d", array.shape[1], array.shape[0])
        return array

    @staticmethod
    def to_detection_tensor(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Add the batch axis: HxWx3 -> 1xHxWx3."""
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected an HxWx3 image, got shape {list(image.shape)}")
        return np.ascontiguousarray(image[np.newaxis, ...], dtype=np.uint8)
