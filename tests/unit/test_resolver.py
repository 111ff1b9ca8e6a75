"""
Unit tests for the resolution coordinator
"""

import pytest
import numpy as np
import cv2
import os
import sys
import threading
import time

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import ResolvedKey
from imagery import codec
from imagery.artifact_cache import ArtifactCache
from imagery.errors import DecodeError, InvalidRatio, InvalidRequest, Timeout, TransformFailure, UnknownImage
from imagery.registry import BaseImageRegistry
from imagery.resolver import Resolver
from imagery.transform import TransformEngine, fade_blend

RATIOS = (0, 20, 35, 50, 75, 90)


def write_images(root):
    """placeholder.png (BGRA gradient) and banner.png (BGR noise)."""
    h, w = 24, 32
    ph = np.zeros((h, w, 4), dtype=np.uint8)
    ph[..., 0] = np.arange(w, dtype=np.uint8)[None, :] * 7
    ph[..., 1] = np.arange(h, dtype=np.uint8)[:, None] * 9
    ph[..., 2] = 80
    ph[..., 3] = 255
    assert cv2.imwrite(str(root / "placeholder.png"), ph)
    banner = np.random.default_rng(1).integers(0, 256, (h, w, 3), dtype=np.uint8)
    assert cv2.imwrite(str(root / "banner.png"), banner)
    return ph


def make_resolver(root, max_bytes=10 * 1024 * 1024, engine=None, timeout=None, extra=None):
    registry = BaseImageRegistry(str(root), extra=extra)
    cache = ArtifactCache(max_bytes=max_bytes)
    return Resolver(registry, cache, engine or TransformEngine(), accepted=RATIOS, default_ratio=0, timeout=timeout)


@pytest.fixture
def image_root(tmp_path):
    write_images(tmp_path)
    return tmp_path


class TestResolve:
    """Test cases for Resolver.resolve"""

    def test_repeat_is_byte_identical_and_not_recomputed(self, image_root):
        """For every accepted ratio, the second resolve is a cache hit"""
        res = make_resolver(image_root)
        try:
            for r in RATIOS:
                first = res.resolve("placeholder.png", {"ratio": str(r)})
                calls = res.engine.calls
                second = res.resolve("placeholder.png", {"ratio": str(r)})
                assert second.data == first.data
                assert first.cache_hit is False
                assert second.cache_hit is True
                assert res.engine.calls == calls
        finally:
            res.cache.close()

    def test_zero_ratio_serves_source_bytes(self, image_root):
        """Identity transform does not re-encode"""
        res = make_resolver(image_root)
        try:
            out = res.resolve("placeholder.png")
            assert out.data == (image_root / "placeholder.png").read_bytes()
            assert out.media_type == "image/png"
        finally:
            res.cache.close()

    def test_blended_output_matches_fade(self, image_root):
        src = cv2.imread(str(image_root / "placeholder.png"), cv2.IMREAD_UNCHANGED)
        res = make_resolver(image_root)
        try:
            out = res.resolve("placeholder_50.png")
            assert np.array_equal(codec.decode(out.data), fade_blend(src, 50))
        finally:
            res.cache.close()

    @pytest.mark.parametrize("value", ["13", "-5", "abc"])
    def test_unaccepted_ratio_does_not_touch_cache(self, image_root, value):
        res = make_resolver(image_root)
        try:
            with pytest.raises(InvalidRequest) as ei:
                res.resolve("placeholder.png", {"ratio": value})
            assert isinstance(ei.value, InvalidRatio)
            s = res.cache.stats()
            assert s["entries"] == 0 and s["misses"] == 0 and s["hits"] == 0
        finally:
            res.cache.close()

    def test_fallback_law(self, image_root):
        res = make_resolver(image_root)
        try:
            a = res.resolve("placeholder_20.png", {"ratio": "90"})
            b = res.resolve("placeholder.png", {"ratio": "90"})
            assert a.key == b.key == ResolvedKey("placeholder", 90)
            assert a.data == b.data
        finally:
            res.cache.close()

    def test_default_law(self, image_root):
        res = make_resolver(image_root)
        try:
            a = res.resolve("placeholder.png")
            b = res.resolve("placeholder.png", {"ratio": "0"})
            assert a.key == b.key
            assert a.data == b.data
        finally:
            res.cache.close()

    def test_unknown_image_inserts_nothing(self, image_root):
        res = make_resolver(image_root)
        try:
            with pytest.raises(UnknownImage):
                res.resolve("doesnotexist.png", {"ratio": "50"})
            assert len(res.cache) == 0
        finally:
            res.cache.close()

    def test_image_missing_at_load_time(self, image_root):
        """Name passes the parser but the file is gone"""
        res = make_resolver(image_root)
        try:
            (image_root / "banner.png").unlink()
            with pytest.raises(UnknownImage):
                res.resolve("banner.png", {"ratio": "20"})
            assert len(res.cache) == 0
        finally:
            res.cache.close()

    def test_unreadable_source_is_transform_failure(self, image_root):
        """Registered path that cannot be read (a directory) maps to a 500, never cached"""
        folder = image_root / "not-a-file"
        folder.mkdir()
        res = make_resolver(image_root, extra={"broken": str(folder)})
        try:
            with pytest.raises(TransformFailure) as ei:
                res.resolve("broken.png", {"ratio": "20"})
            assert ei.value.status_code == 500
            assert isinstance(ei.value.__cause__, OSError)
            s = res.cache.stats()
            assert s["entries"] == 0
            assert s["failures"] == 1
        finally:
            res.cache.close()

    def test_corrupt_source_is_decode_error_and_not_cached(self, image_root):
        (image_root / "broken.png").write_bytes(b"\x89PNG not really")
        res = make_resolver(image_root)
        try:
            for _ in range(2):
                with pytest.raises(DecodeError):
                    res.resolve("broken.png", {"ratio": "35"})
            s = res.cache.stats()
            assert s["entries"] == 0
            assert s["failures"] == 2
        finally:
            res.cache.close()

    def test_blend_failure(self, image_root):
        def broken(img, ratio):
            raise RuntimeError("gpu on fire")

        res = make_resolver(image_root, engine=TransformEngine(blend=broken))
        try:
            with pytest.raises(TransformFailure) as ei:
                res.resolve("placeholder_75.png")
            assert isinstance(ei.value.__cause__, RuntimeError)
            assert len(res.cache) == 0
        finally:
            res.cache.close()


class TestResolveConcurrency:
    """Test cases for single-flight and timeouts through the resolver"""

    def test_single_flight(self, image_root):
        """N concurrent resolves of one uncached key -> one transform"""
        n = 6
        gate = threading.Event()

        def gated(img, ratio):
            assert gate.wait(10.0)
            return fade_blend(img, ratio)

        res = make_resolver(image_root, engine=TransformEngine(blend=gated))
        results = []
        lock = threading.Lock()

        def worker():
            out = res.resolve("placeholder.png", {"ratio": "35"})
            with lock:
                results.append(out.data)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        try:
            for t in threads:
                t.start()
            deadline = time.monotonic() + 5.0
            while res.cache.stats()["shared"] < n - 1 and time.monotonic() < deadline:
                time.sleep(0.005)
            gate.set()
            for t in threads:
                t.join(10.0)
            assert res.engine.calls == 1
            assert len(results) == n
            assert len(set(results)) == 1
        finally:
            gate.set()
            res.cache.close()

    def test_timeout_does_not_corrupt_cache(self, image_root):
        gate = threading.Event()

        def gated(img, ratio):
            assert gate.wait(10.0)
            return fade_blend(img, ratio)

        res = make_resolver(image_root, engine=TransformEngine(blend=gated), timeout=0.05)
        key = ResolvedKey("placeholder", 50)
        try:
            with pytest.raises(Timeout):
                res.resolve("placeholder.png", {"ratio": "50"})
            assert key not in res.cache
            gate.set()
            deadline = time.monotonic() + 5.0
            while key not in res.cache and time.monotonic() < deadline:
                time.sleep(0.005)
            out = res.resolve("placeholder.png", {"ratio": "50"})
            assert out.cache_hit is True
            assert codec.decode(out.data).shape == (24, 32, 4)
        finally:
            gate.set()
            res.cache.close()


class TestResolveEviction:
    """Test cases for eviction through the resolver"""

    def test_least_recently_accessed_evicted_first(self, image_root):
        sizer = make_resolver(image_root)
        try:
            sizes = {r: len(sizer.resolve("placeholder.png", {"ratio": str(r)}).data) for r in (20, 35, 50)}
        finally:
            sizer.cache.close()
        # any two fit, all three do not
        ceiling = max(sizes[20] + sizes[35], sizes[20] + sizes[50], sizes[35] + sizes[50])

        res = make_resolver(image_root, max_bytes=ceiling)
        try:
            res.resolve("placeholder_20.png")
            res.resolve("placeholder_35.png")
            assert res.resolve("placeholder_20.png").cache_hit is True
            res.resolve("placeholder_50.png")

            assert ResolvedKey("placeholder", 35) not in res.cache
            assert ResolvedKey("placeholder", 20) in res.cache
            assert res.cache.stats()["evictions"] == 1

            calls = res.engine.calls
            again = res.resolve("placeholder_35.png")
            assert again.cache_hit is False
            assert res.engine.calls == calls + 1
        finally:
            res.cache.close()
