from __future__ import annotations

"""
Transform engine: blend a decoded base image toward a fixed target by ratio/100.

The blend is pluggable; any deterministic `(image, ratio) -> image` callable works.
"""

import threading
from typing import Callable, Sequence

import numpy as np

from common.types import RasterImage
from imagery.errors import ResolveError, TransformFailure


BlendFn = Callable[[RasterImage, int], RasterImage]


def _mix_u8(src: np.ndarray, target: np.ndarray, ratio: int) -> np.ndarray:
    """(src*(100-r) + target*r) / 100 with round-half-up, in integer math."""
    acc = src.astype(np.uint32) * (100 - ratio) + target.astype(np.uint32) * ratio
    return ((acc + 50) // 100).astype(np.uint8)


def make_fade_blend(target_bgr: Sequence[int] = (255, 255, 255)) -> BlendFn:
    """
    Build a fade blend:
      - colour channels move toward `target_bgr`
      - an alpha channel, when present, moves toward fully transparent
      - gray images move toward the target's luma
    """
    b, g, r = (int(v) for v in target_bgr)
    target_bgr_arr = np.array([b, g, r], dtype=np.uint8)
    target_gray = np.uint8(int(round(0.114 * b + 0.587 * g + 0.299 * r)))

    def fade_blend(img: RasterImage, ratio: int) -> RasterImage:
        if img.ndim == 2:
            return _mix_u8(img, np.full_like(img, target_gray), ratio)
        if img.ndim != 3 or img.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported image shape {img.shape}")
        out = np.empty_like(img)
        out[..., :3] = _mix_u8(img[..., :3], np.broadcast_to(target_bgr_arr, img[..., :3].shape), ratio)
        if img.shape[2] == 4:
            out[..., 3] = _mix_u8(img[..., 3], np.zeros_like(img[..., 3]), ratio)
        return out

    return fade_blend


fade_blend = make_fade_blend()


class TransformEngine:
    """
    Wraps a blend function with the ratio contract:
      - ratio 0 returns the input object itself (identity, no copy)
      - ratio in 1..100 returns blend(image, ratio)
      - blend errors surface as TransformFailure chained to the cause
    `calls` counts every invocation, identity included.
    """
    def __init__(self, blend: BlendFn = fade_blend):
        self.blend = blend
        self._lock = threading.Lock()
        self.calls = 0

    def transform(self, image: RasterImage, ratio: int) -> RasterImage:
        if not (0 <= ratio <= 100):
            raise TransformFailure(f"Ratio {ratio} outside 0..100")
        with self._lock:
            self.calls += 1
        if ratio == 0:
            return image
        try:
            out = self.blend(image, ratio)
        except ResolveError:
            raise
        except Exception as e:
            raise TransformFailure(f"Blend failed at ratio {ratio}: {e}") from e
        if not isinstance(out, np.ndarray):
            raise TransformFailure(f"Blend returned {type(out).__name__}, expected ndarray")
        return out

    __call__ = transform
