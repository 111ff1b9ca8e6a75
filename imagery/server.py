from __future__ import annotations

import argparse
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from common.logging_setup import get_logger, setup_logging
from common.utils import iso_now_ms
from imagery.config import ImageryConfig, load_config
from imagery.errors import ResolveError
from imagery.resolver import Resolver, build_resolver


log = get_logger("imagery.server")


def create_app(config: Optional[ImageryConfig] = None, resolver: Optional[Resolver] = None) -> FastAPI:
    """
    Build the FastAPI app. The resolver (and its cache) is created once here
    and torn down on shutdown; pass `resolver` to inject a pre-built one.
    """
    cfg = config or load_config()
    res = resolver or build_resolver(cfg)
    started_at = iso_now_ms()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Imagery server starting", extra={"extra": {"images": len(res.registry)}})
        yield
        res.cache.close(wait=False)
        log.info("Imagery server stopped", extra={"extra": res.cache.stats()})

    app = FastAPI(title="Imagery Blend API", version="1.0.0", lifespan=lifespan)
    app.state.config = cfg
    app.state.resolver = res

    # (Optional) CORS for local dev tools
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(ResolveError)
    async def resolve_error_handler(request: Request, exc: ResolveError):
        if exc.status_code >= 500:
            log.error(
                "Image resolution failed",
                exc_info=exc,
                extra={"extra": {"path": request.url.path, "error": exc.kind}},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        kind = "not_found" if exc.status_code == 404 else "http_error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": kind, "detail": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    # Terse error surface for clients; details stay in server logs
    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        log.error("Unhandled server error", exc_info=exc, extra={"extra": {"path": request.url.path}})
        return JSONResponse(status_code=500, content={"error": "server_error", "detail": "Server error"})

    def _serve(path: str, request: Request) -> Response:
        resolved = res.resolve(path, dict(request.query_params))
        headers = {
            "Cache-Control": cfg.server.cache_control,
            "X-Cache": "HIT" if resolved.cache_hit else "MISS",
            "X-Image-Name": resolved.key.name,
            "X-Image-Ratio": str(resolved.key.ratio),
        }
        return Response(content=resolved.data, media_type=resolved.media_type, headers=headers)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "started_at": started_at,
            "images": res.registry.stats(),
            "placeholder": {
                "name": cfg.images.placeholder,
                "available": cfg.images.placeholder in res.registry,
            },
            "cache": res.cache.stats(),
        }

    @app.get("/stats")
    def stats():
        return {"cache": res.cache.stats(), "transforms": res.engine.calls}

    @app.get("/images")
    def images():
        return {
            "names": res.registry.names(),
            "ratios": list(res.parser.accepted),
            "default_ratio": res.parser.default,
        }

    @app.get("/image/{path:path}")
    def image(path: str, request: Request):
        """Return PNG bytes for /image/<name>[_<ratio>].png[?ratio=<value>]."""
        return _serve(path, request)

    @app.get("/{filename}")
    def image_root(filename: str, request: Request):
        return _serve(filename, request)

    return app


# -------- local dev entrypoint --------
def main() -> None:
    ap = argparse.ArgumentParser(description="Serve blended image variants over HTTP")
    ap.add_argument("--config", default=None, help="YAML config (default: $IMAGERY_CONFIG or config/params.yaml)")
    ap.add_argument("--host", default=None)
    ap.add_argument("--port", type=int, default=None)
    args = ap.parse_args()

    cfg = load_config(args.config)
    setup_logging(os.environ.get("LOG_LEVEL") or cfg.log_level)
    app = create_app(cfg)
    uvicorn.run(
        app,
        host=args.host or cfg.server.host,
        port=args.port or cfg.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
