from __future__ import annotations

"""
Resolution coordinator: raw request -> encoded artifact bytes.

    Parsing -> CacheHit -> Done
            -> CacheMiss -> Loading -> Transforming -> Encoding -> Inserting -> Done
    any stage -> Failed(reason)

No retries happen here; a failure goes back to the caller as a ResolveError.
"""

from typing import Any, Dict, Optional

from common.logging_setup import get_logger
from common.types import ResolvedImage, ResolvedKey
from imagery import codec
from imagery.artifact_cache import ArtifactCache
from imagery.config import ImageryConfig
from imagery.errors import ResolveError, TransformFailure
from imagery.parser import FallbackApplied, IdentifierParser, Invalid
from imagery.registry import BaseImageRegistry
from imagery.transform import TransformEngine, make_fade_blend


log = get_logger("imagery.resolver")

MEDIA_TYPE = "image/png"


class Resolver:
    def __init__(
        self,
        registry: BaseImageRegistry,
        cache: ArtifactCache,
        engine: Optional[TransformEngine] = None,
        *,
        accepted=(0, 20, 35, 50, 75, 90),
        default_ratio: int = 0,
        timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.cache = cache
        self.engine = engine or TransformEngine()
        self.parser = IdentifierParser(registry, accepted, default_ratio)
        self.timeout = timeout

    def resolve(
        self,
        raw_path: str,
        query_params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ResolvedImage:
        """
        Resolve a request to PNG bytes.
        Raises InvalidRequest/InvalidRatio/UnknownImage/DecodeError/TransformFailure/Timeout.
        """
        outcome = self.parser.parse(raw_path, query_params)
        if isinstance(outcome, Invalid):
            log.info(
                "Rejected image request",
                extra={"extra": {"path": raw_path, "error": outcome.error.kind, "detail": outcome.error.detail}},
            )
            raise outcome.error
        if isinstance(outcome, FallbackApplied):
            log.debug(
                "Ratio query overrides path suffix",
                extra={"extra": {"path": raw_path, "discarded": outcome.discarded_suffix, "key": str(outcome.key)}},
            )
        return self.resolve_key(outcome.key, timeout=timeout)

    def resolve_key(self, key: ResolvedKey, timeout: Optional[float] = None) -> ResolvedImage:
        computed = []

        def compute() -> bytes:
            computed.append(True)
            return self._render(key)

        data = self.cache.get_or_compute(key, compute, timeout=self.timeout if timeout is None else timeout)
        hit = not computed
        log.info(
            "Served image from cache" if hit else "Rendered image into cache",
            extra={"extra": {"key": str(key), "bytes": len(data)}},
        )
        return ResolvedImage(key=key, data=data, media_type=MEDIA_TYPE, cache_hit=hit)

    # -------- internals --------

    def _render(self, key: ResolvedKey) -> bytes:
        """CacheMiss path; runs on the key's computation thread."""
        log.debug("Loading base image", extra={"extra": {"key": str(key)}})
        try:
            source = self.registry.load(key.name)
        except ResolveError:
            raise
        except Exception as e:
            raise TransformFailure(f"Could not load '{key.name}': {e}", name=key.name) from e

        image = codec.decode(source)

        log.debug("Transforming", extra={"extra": {"key": str(key), "shape": list(image.shape)}})
        try:
            out = self.engine.transform(image, key.ratio)
        except ResolveError:
            raise
        except Exception as e:
            raise TransformFailure(f"Transform failed for '{key}': {e}") from e

        if out is image:
            # identity: serve the source bytes as-is, no re-encode
            return source

        log.debug("Encoding", extra={"extra": {"key": str(key)}})
        return codec.encode(out, ".png")


def build_resolver(config: ImageryConfig) -> Resolver:
    """Wire registry, cache and engine from config. The caller owns the cache lifecycle."""
    registry = BaseImageRegistry(config.images.root, extra=config.images.extra)
    cache = ArtifactCache(
        max_bytes=config.cache.max_bytes,
        max_entries=config.cache.max_entries,
    )
    engine = TransformEngine(make_fade_blend(config.blend_target_bgr))
    if config.images.placeholder not in registry:
        log.warning(
            "Placeholder image is not registered",
            extra={"extra": {"placeholder": config.images.placeholder, "root": config.images.root}},
        )
    return Resolver(
        registry,
        cache,
        engine,
        accepted=config.ratios.accepted,
        default_ratio=config.ratios.default,
        timeout=config.server.request_timeout_s,
    )
