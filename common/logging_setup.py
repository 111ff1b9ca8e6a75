from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Request-identifying fields promoted out of `extra` so every line about one
# artifact can be filtered on the same top-level keys.
REQUEST_FIELDS = ("key", "name", "ratio", "path")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:

      {"ts": "2024-05-01T12:00:00.123Z", "level": "WARNING", "logger": "imagery.cache",
       "thread": "artifact-banner@35", "event": "Artifact computation failed",
       "key": "banner@35", "ctx": {"error": "..."}}

    `key`/`name`/`ratio`/`path` from the `extra={"extra": {...}}` dict are
    lifted to the top level; whatever remains goes under `ctx`. Exceptions
    carrying a `kind` (the resolve error taxonomy) add `error_kind`.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "event": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            ctx = dict(extra)
            for field in REQUEST_FIELDS:
                if field in ctx:
                    payload[field] = ctx.pop(field)
            if ctx:
                payload["ctx"] = ctx
        if record.exc_info:
            exc = record.exc_info[1]
            kind = getattr(exc, "kind", None)
            if kind:
                payload["error_kind"] = kind
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[str]) -> int:
    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(lvl_name)
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logger once with JSON formatting.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (e.g., DEBUG/INFO/WARNING/ERROR)
      - default INFO
    Once configured, a call with an explicit level only adjusts the level.
    """
    root = logging.getLogger()
    if getattr(root, "_imagery_configured", False):  # idempotent
        if level:
            root.setLevel(_resolve_level(level))
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level(level))
    root._imagery_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
