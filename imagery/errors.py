"""
Error taxonomy for image resolution.

These exceptions keep the core HTTP-agnostic; the server maps them onto
status codes through `status_code` and a short machine-readable `kind`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ResolveError(Exception):
    """Base class for every failure surfaced by the resolution pipeline."""

    status_code = 500
    kind = "resolve_error"

    def __init__(self, detail: str, *, name: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.name = name

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.kind, "detail": self.detail}
        if self.name is not None:
            out["name"] = self.name
        return out


class InvalidRequest(ResolveError):
    """Malformed path or query."""

    status_code = 400
    kind = "invalid_request"


class InvalidRatio(InvalidRequest):
    """Ratio not in the accepted set."""

    kind = "invalid_ratio"


class UnknownImage(ResolveError):
    """Base image name not present in the registry."""

    status_code = 404
    kind = "unknown_image"


class TransformFailure(ResolveError):
    """Blend or encode failure; the root cause is chained as __cause__."""

    status_code = 500
    kind = "transform_failure"


class DecodeError(TransformFailure):
    """Source bytes could not be decoded into a raster image."""

    kind = "decode_error"


class Timeout(ResolveError):
    """The caller stopped waiting for an in-flight computation."""

    status_code = 504
    kind = "timeout"
