"""Label list and serialized graph loaders."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _require_path(path: str | os.PathLike[str] | None) -> Path:
    if path is None or not os.fspath(path):
        raise FileNotFoundError(f"No file path given: {path!r}")
    return Path(path)


def load_txt_labels(path: str | os.PathLike[str] | None) -> list[str]:
    """Read a label file, one class name per line.

    Blank lines are skipped, so the position of each name in the returned list
    is its class index.

    Raises:
        OSError: If the path is None or empty, or the file cannot be read.
    """
    label_path = _require_path(path)
    labels: list[str] = []
    with label_path.open(encoding="utf-8") as handle:
        for line in handle:
            name = line.rstrip("\r\n")
            if name:
                labels.append(name)
    logger.debug("Loaded %d labels from %s", len(labels), label_path)
    return labels


def load_model(path: str | os.PathLike[str] | None) -> bytes:
    """Return the raw bytes of a serialized model graph.

    The content is not validated; the runtime rejects malformed graphs when a
    session is built from them.

    Raises:
        OSError: If the path is None or empty, or the file cannot be read.
    """
    model_path = _require_path(path)
    data = model_path.read_bytes()
    logger.debug("Read %d bytes of model graph from %s", len(data), model_path)
    return data
