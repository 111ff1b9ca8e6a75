from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np


# Decoded raster as returned by cv2.imdecode: (H,W) gray, (H,W,3) BGR or (H,W,4) BGRA, uint8.
RasterImage = np.ndarray


@dataclass(frozen=True, slots=True)
class ImageRequest:
    """
    One inbound image request, as received by the HTTP layer.

    Attributes:
        raw_path: requested file name, e.g. "placeholder_20.png".
        ratio_param: raw `ratio` query value; kept as a string so that
            non-numeric values are rejected as InvalidRatio.
    """
    raw_path: str
    ratio_param: Optional[str] = None

    @classmethod
    def from_query(cls, raw_path: str, query_params: Optional[Dict[str, Any]] = None) -> "ImageRequest":
        value = (query_params or {}).get("ratio")
        return cls(raw_path=raw_path, ratio_param=None if value is None else str(value))


@dataclass(frozen=True, slots=True)
class ResolvedKey:
    """Canonical cache key: base image name + blend ratio (percent)."""
    name: str
    ratio: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must be non-empty")
        if not isinstance(self.ratio, int) or isinstance(self.ratio, bool):
            raise TypeError("ratio must be an int")
        if not (0 <= self.ratio <= 100):
            raise ValueError("ratio out of range")

    @property
    def variant_name(self) -> str:
        """File name of the variant, e.g. "placeholder_20.png" (ratio 0 -> "placeholder.png")."""
        if self.ratio == 0:
            return f"{self.name}.png"
        return f"{self.name}_{self.ratio}.png"

    def __str__(self) -> str:
        return f"{self.name}@{self.ratio}"


@dataclass(frozen=True, slots=True)
class ResolvedImage:
    """Result of a resolution handed back to the HTTP layer."""
    key: ResolvedKey
    data: bytes
    media_type: str = "image/png"
    cache_hit: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_meta(self) -> Dict[str, Any]:
        """Metadata without image bytes (safe to log/serialize)."""
        return {
            "name": self.key.name,
            "ratio": self.key.ratio,
            "media_type": self.media_type,
            "size_bytes": self.size_bytes,
            "cache_hit": self.cache_hit,
        }
