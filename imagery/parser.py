from __future__ import annotations

"""
Identifier parsing: raw path + query -> canonical ResolvedKey.

Decision table (stem = file name without ".png"):

  stem registered                      -> Valid(stem, query ratio or default)
  stem = <base>_<suffix>, base known:
      ratio query present              -> FallbackApplied(base, query ratio)
      suffix is an accepted ratio      -> Valid(base, suffix)
      otherwise                        -> Invalid(InvalidRatio)
  anything else                        -> Invalid(UnknownImage)

A present ratio query is validated first, so a bad ratio is reported as
InvalidRatio whatever the name.
"""

from dataclasses import dataclass
from typing import Any, Container, Dict, Iterable, Optional, Tuple, Union

from common.types import ImageRequest, ResolvedKey
from imagery.errors import InvalidRatio, InvalidRequest, ResolveError, UnknownImage
from imagery.registry import NAME_RE


EXTENSION = ".png"


@dataclass(frozen=True)
class Valid:
    key: ResolvedKey


@dataclass(frozen=True)
class FallbackApplied:
    """The path's suffix was discarded in favour of the ratio query."""
    key: ResolvedKey
    discarded_suffix: str


@dataclass(frozen=True)
class Invalid:
    error: ResolveError


ParseOutcome = Union[Valid, FallbackApplied, Invalid]


def normalize_ratio(value: Optional[str], accepted: Iterable[int], default: int) -> int:
    """
    Map a raw ratio string onto an accepted ratio.
    None -> default; anything that is not exactly one of `accepted` -> InvalidRatio.
    """
    if value is None:
        return default
    by_text = {str(int(r)): int(r) for r in accepted}
    text = str(value)
    if text not in by_text:
        raise InvalidRatio(
            f"Ratio '{text}' is not supported; expected one of {', '.join(by_text)}."
        )
    return by_text[text]


def split_path(raw_path: str) -> str:
    """Validate the file name shape and return its stem."""
    path = (raw_path or "").lstrip("/")
    if not path:
        raise InvalidRequest("The file path is invalid.")
    if "/" in path or "\\" in path or ".." in path:
        raise InvalidRequest("The file path is invalid.")
    if not path.lower().endswith(EXTENSION):
        raise InvalidRequest("The image content type is invalid.")
    stem = path[: -len(EXTENSION)]
    if not NAME_RE.match(stem):
        raise InvalidRequest("The image name is invalid.")
    return stem


def parse(
    raw_path: str,
    query_params: Optional[Dict[str, Any]],
    *,
    names: Container[str],
    accepted: Iterable[int],
    default: int = 0,
) -> ParseOutcome:
    """Pure function of its inputs; never raises for bad input, returns Invalid instead."""
    request = ImageRequest.from_query(raw_path, query_params)
    accepted = tuple(accepted)
    try:
        stem = split_path(request.raw_path)
        query_ratio = None
        if request.ratio_param is not None:
            query_ratio = normalize_ratio(request.ratio_param, accepted, default)

        if stem in names:
            ratio = default if query_ratio is None else query_ratio
            return Valid(ResolvedKey(stem, ratio))

        if "_" in stem:
            base, suffix = stem.rsplit("_", 1)
            if base in names:
                if query_ratio is not None:
                    return FallbackApplied(ResolvedKey(base, query_ratio), discarded_suffix=suffix)
                return Valid(ResolvedKey(base, normalize_ratio(suffix, accepted, default)))

        return Invalid(UnknownImage(f"Image '{stem}' is not registered.", name=stem))
    except ResolveError as e:
        return Invalid(e)


class IdentifierParser:
    """Binds `parse` to a registry's name set and the configured ratios."""

    def __init__(self, names: Container[str], accepted: Iterable[int], default: int = 0):
        self.names = names
        self.accepted: Tuple[int, ...] = tuple(sorted({int(r) for r in accepted}))
        if default not in self.accepted:
            raise ValueError(f"default ratio {default} is not accepted")
        self.default = int(default)

    def parse(self, raw_path: str, query_params: Optional[Dict[str, Any]] = None) -> ParseOutcome:
        return parse(raw_path, query_params, names=self.names, accepted=self.accepted, default=self.default)

    def parse_or_raise(self, raw_path: str, query_params: Optional[Dict[str, Any]] = None) -> ResolvedKey:
        outcome = self.parse(raw_path, query_params)
        if isinstance(outcome, Invalid):
            raise outcome.error
        return outcome.key
