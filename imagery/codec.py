from __future__ import annotations

"""
OpenCV codec: encoded bytes <-> numpy raster (BGR / BGRA / gray, uint8).
"""

import cv2
import numpy as np

from common.types import RasterImage
from imagery.errors import DecodeError, TransformFailure


# Fixed PNG compression level keeps encoded output stable for a given raster.
PNG_COMPRESSION = 6


def decode(data: bytes) -> RasterImage:
    """Decode image bytes, keeping an alpha channel if the source has one."""
    if not data:
        raise DecodeError("Image data is empty.")
    arr = np.frombuffer(data, dtype=np.uint8)
    try:
        img = cv2.imdecode(arr, cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise DecodeError(f"Failed to decode image: {e}") from e
    if img is None:
        raise DecodeError("Failed to decode image.")
    if img.dtype != np.uint8:
        # 16-bit PNGs: scale down so every downstream op sees uint8
        img = (img.astype(np.float64) / 257.0).round().astype(np.uint8)
    return img


def encode(img: RasterImage, ext: str = ".png") -> bytes:
    """Encode a raster fully in memory; nothing is returned on partial failure."""
    params = [cv2.IMWRITE_PNG_COMPRESSION, PNG_COMPRESSION] if ext == ".png" else []
    try:
        ok, buf = cv2.imencode(ext, img, params)
    except cv2.error as e:
        raise TransformFailure(f"Failed to encode image: {e}") from e
    if not ok:
        raise TransformFailure("Failed to encode image.")
    return buf.tobytes()
