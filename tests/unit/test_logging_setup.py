"""
Unit tests for the JSON log formatter
"""

import json
import logging
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.logging_setup import JsonFormatter
from imagery.errors import DecodeError


def make_record(msg, extra=None, exc_info=None, level=logging.INFO):
    record = logging.LogRecord("imagery.cache", level, __file__, 1, msg, None, exc_info)
    if extra is not None:
        record.extra = extra
    return record


class TestJsonFormatter:
    """Test cases for JsonFormatter"""

    def test_request_fields_are_top_level(self):
        record = make_record(
            "Artifact computed",
            extra={"key": "banner@35", "name": "banner", "ratio": 35, "bytes": 812, "ms": 1.5},
        )
        out = json.loads(JsonFormatter().format(record))
        assert out["event"] == "Artifact computed"
        assert out["level"] == "INFO"
        assert out["logger"] == "imagery.cache"
        assert out["key"] == "banner@35"
        assert out["name"] == "banner"
        assert out["ratio"] == 35
        assert out["ctx"] == {"bytes": 812, "ms": 1.5}
        assert out["ts"].endswith("Z")

    def test_no_ctx_without_leftover_fields(self):
        out = json.loads(JsonFormatter().format(make_record("Evicted artifact", extra={"key": "a@0"})))
        assert out["key"] == "a@0"
        assert "ctx" not in out

    def test_error_kind_from_exception(self):
        try:
            raise DecodeError("Image bytes could not be decoded.", name="broken")
        except DecodeError:
            record = make_record("Image resolution failed", exc_info=sys.exc_info(), level=logging.ERROR)
        out = json.loads(JsonFormatter().format(record))
        assert out["error_kind"] == "decode_error"
        assert "DecodeError" in out["traceback"]
