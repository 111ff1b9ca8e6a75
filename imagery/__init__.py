"""
Imagery: blended image variants over HTTP

- Parses /<name>[_<ratio>].png[?ratio=<value>] into a (name, ratio) key
- Blends the base image toward a fixed target by ratio/100 (OpenCV/numpy)
- Caches encoded PNG artifacts in a byte-bounded LRU with per-key single-flight
- Endpoints: /<file>.png, /image/<file>.png, /images, /stats, /health

Entry point:
    python -m imagery.server --config config/params.yaml
"""
from .resolver import Resolver, build_resolver

__all__ = ["Resolver", "build_resolver"]
