from __future__ import annotations

"""
Configuration for the imagery server.

Loaded from YAML (default `config/params.yaml`, or env IMAGERY_CONFIG).
A missing file yields the built-in defaults below.
"""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

ACCEPTED_RATIOS: Tuple[int, ...] = (0, 20, 35, 50, 75, 90)

DEFAULTS: Dict[str, Any] = {
    "images": {"root": "data/images", "placeholder": "placeholder", "extra": {}},
    "ratios": {"accepted": list(ACCEPTED_RATIOS), "default": 0},
    "cache": {"max_bytes": 64 * 1024 * 1024, "max_entries": None},
    "blend": {"target_bgr": [255, 255, 255]},
    "server": {
        "host": "0.0.0.0",
        "port": 8000,
        "request_timeout_s": None,
        "cache_control": "public, max-age=3600",
    },
    "logging": {"level": "INFO"},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


@dataclass(frozen=True)
class ImagesConfig:
    root: str = "data/images"
    placeholder: str = "placeholder"
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RatioConfig:
    accepted: Tuple[int, ...] = ACCEPTED_RATIOS
    default: int = 0

    def __post_init__(self) -> None:
        if not self.accepted:
            raise ValueError("ratios.accepted must not be empty")
        for r in self.accepted:
            if not (0 <= int(r) <= 100):
                raise ValueError(f"ratio {r} outside 0..100")
        if self.default not in self.accepted:
            raise ValueError(f"ratios.default={self.default} is not in ratios.accepted")


@dataclass(frozen=True)
class CacheConfig:
    max_bytes: int = 64 * 1024 * 1024
    max_entries: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_bytes <= 0:
            raise ValueError("cache.max_bytes must be > 0")
        if self.max_entries is not None and self.max_entries <= 0:
            raise ValueError("cache.max_entries must be > 0 (or null)")


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    request_timeout_s: Optional[float] = None
    cache_control: str = "public, max-age=3600"


@dataclass(frozen=True)
class ImageryConfig:
    images: ImagesConfig = field(default_factory=ImagesConfig)
    ratios: RatioConfig = field(default_factory=RatioConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    blend_target_bgr: Tuple[int, int, int] = (255, 255, 255)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ImageryConfig":
        """Build a config from a (possibly partial) dict; missing keys use DEFAULTS."""
        D = _merge(DEFAULTS, raw or {})
        im = D["images"]
        rt = D["ratios"]
        ca = D["cache"]
        sv = D["server"]

        target = [int(v) for v in D["blend"]["target_bgr"]]
        if len(target) != 3 or any(not (0 <= v <= 255) for v in target):
            raise ValueError("blend.target_bgr must be three values in 0..255")

        timeout = sv.get("request_timeout_s")
        max_entries = ca.get("max_entries")
        return cls(
            images=ImagesConfig(
                root=str(im["root"]),
                placeholder=str(im["placeholder"]),
                extra={str(k): str(v) for k, v in (im.get("extra") or {}).items()},
            ),
            ratios=RatioConfig(
                accepted=tuple(sorted({int(r) for r in rt["accepted"]})),
                default=int(rt["default"]),
            ),
            cache=CacheConfig(
                max_bytes=int(ca["max_bytes"]),
                max_entries=None if max_entries is None else int(max_entries),
            ),
            blend_target_bgr=(target[0], target[1], target[2]),
            server=ServerConfig(
                host=str(sv["host"]),
                port=int(sv["port"]),
                request_timeout_s=None if timeout is None else float(timeout),
                cache_control=str(sv["cache_control"]),
            ),
            log_level=str(D["logging"]["level"]),
        )


def load_config(path: Optional[str] = None) -> ImageryConfig:
    """
    Load YAML config. Path precedence: explicit arg, env IMAGERY_CONFIG, config/params.yaml.
    """
    path = path or os.environ.get("IMAGERY_CONFIG") or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return ImageryConfig.from_dict(None)
    with open(path, "r") as f:
        return ImageryConfig.from_dict(yaml.safe_load(f) or {})
