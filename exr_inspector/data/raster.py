"""Decoding of preview rasters delivered by the backend.

The engine returns previews as PNG images, base64 encoded when they travel
through a text based bridge.  :func:`decode_raster` turns any of the accepted
representations into a contiguous ``(height, width, 4)`` ``uint8`` RGBA array
so the compositor only ever deals with one pixel layout.
"""

from __future__ import annotations

import base64
import binascii
import io
from typing import Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError


RasterSource = Union[str, bytes, bytearray, memoryview, np.ndarray]


class RasterDecodeError(ValueError):
    """Raised when a raster payload cannot be turned into RGBA pixels."""


def _to_rgba(array: np.ndarray) -> np.ndarray:
    if array.ndim == 2:
        array = array[:, :, None]
    if array.ndim != 3 or array.shape[2] not in (1, 3, 4):
        raise RasterDecodeError(f"Unsupported raster shape {array.shape}")
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    height, width, channels = array.shape
    if channels == 4:
        return np.array(array, copy=True, order="C")
    rgba = np.empty((height, width, 4), dtype=np.uint8)
    if channels == 1:
        rgba[:, :, :3] = array
    else:
        rgba[:, :, :3] = array[:, :, :3]
    rgba[:, :, 3] = 255
    return rgba


def _decode_bytes(data: bytes) -> np.ndarray:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            converted = image.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise RasterDecodeError("Raster payload is not a readable image") from exc
    return np.asarray(converted, dtype=np.uint8).copy()


def decode_raster(
    source: RasterSource,
    *,
    expected_size: Optional[tuple[int, int]] = None,
) -> np.ndarray:
    """Return ``source`` as an RGBA ``uint8`` array.

    Parameters
    ----------
    source:
        A decoded array, raw PNG bytes, or a base64 string (optionally a
        ``data:image/png;base64,`` URL).
    expected_size:
        Optional ``(width, height)`` the decoded raster must match.
    """

    if isinstance(source, np.ndarray):
        rgba = _to_rgba(source)
    elif isinstance(source, str):
        text = source.split(",", 1)[1] if source.startswith("data:") else source
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RasterDecodeError("Raster payload is not valid base64") from exc
        rgba = _decode_bytes(raw)
    elif isinstance(source, (bytes, bytearray, memoryview)):
        rgba = _decode_bytes(bytes(source))
    else:
        raise RasterDecodeError(f"Unsupported raster source: {type(source).__name__}")

    if expected_size is not None:
        width, height = expected_size
        if rgba.shape[1] != int(width) or rgba.shape[0] != int(height):
            raise RasterDecodeError(
                f"Raster is {rgba.shape[1]}x{rgba.shape[0]}, expected {int(width)}x{int(height)}"
            )
    return rgba


__all__ = ["RasterDecodeError", "RasterSource", "decode_raster"]
