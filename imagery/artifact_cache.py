from __future__ import annotations

import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from common.logging_setup import get_logger
from common.types import ResolvedKey
from common.utils import RunningStats, timer_ms
from imagery.errors import Timeout, TransformFailure


log = get_logger("imagery.cache")

Compute = Callable[[], bytes]


@dataclass(slots=True)
class CacheEntry:
    """Stored artifact. `data` is immutable bytes; only `last_access` changes."""
    key: ResolvedKey
    data: bytes
    size_bytes: int
    last_access: float


class ArtifactCache:
    """
    Byte-bounded LRU cache of encoded artifacts with per-key single-flight.

    - `_entries` is an OrderedDict kept in recency order (oldest first).
    - `_inflight` maps a key to the Future of its one running computation.
    - `_lock` guards both dicts and the counters; it is never held while
      a computation runs, so misses on different keys proceed in parallel.

    Each in-flight key gets its own computation thread, so a slow miss never
    queues an unrelated one; every caller waits on the shared Future. A caller
    that times out leaves the computation running and its result still lands
    in the cache. Only complete, successful results are inserted, and failures
    are never stored.
    """
    def __init__(self, max_bytes: int = 64 * 1024 * 1024, max_entries: Optional[int] = None):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.max_bytes = int(max_bytes)
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: "OrderedDict[ResolvedKey, CacheEntry]" = OrderedDict()
        self._inflight: Dict[ResolvedKey, Future] = {}
        self._bytes = 0
        self._threads: Dict[ResolvedKey, threading.Thread] = {}
        self._closed = False

        self.hits = 0
        self.misses = 0
        self.shared = 0
        self.computations = 0
        self.failures = 0
        self.evictions = 0
        self.oversize = 0
        self.timeouts = 0
        self._compute_ms = RunningStats()

    # -------- public API --------

    def get_or_compute(self, key: ResolvedKey, compute: Compute, timeout: Optional[float] = None) -> bytes:
        """
        Return the cached bytes for `key`, computing them at most once across
        concurrent callers. Exceptions from `compute` reach every waiting caller.
        Raises Timeout if `timeout` seconds pass before the result is ready.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._touch(entry)
                self.hits += 1
                return entry.data
            if self._closed:
                raise RuntimeError("ArtifactCache is closed")
            fut = self._inflight.get(key)
            leader = fut is None
            if leader:
                fut = Future()
                self._inflight[key] = fut
                self.misses += 1
                t = threading.Thread(
                    target=self._run,
                    args=(key, compute, fut),
                    name=f"artifact-{key}",
                    daemon=True,
                )
                self._threads[key] = t
            else:
                self.shared += 1

        if leader:
            t.start()
        return self._wait(key, fut, timeout)

    def get(self, key: ResolvedKey) -> Optional[bytes]:
        """Lookup without computing; a hit refreshes recency."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._touch(entry)
            self.hits += 1
            return entry.data

    def peek(self, key: ResolvedKey) -> Optional[bytes]:
        """Lookup without refreshing recency or counting a hit."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.data if entry is not None else None

    def contains(self, key: ResolvedKey) -> bool:
        with self._lock:
            return key in self._entries

    __contains__ = contains

    def put(self, key: ResolvedKey, data: bytes) -> bool:
        """Insert directly (bypasses single-flight). Returns False if `data` exceeds max_bytes."""
        with self._lock:
            stored, evicted = self._insert(key, bytes(data))
        self._log_evictions(evicted)
        return stored

    def invalidate(self, key: ResolvedKey) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._bytes -= entry.size_bytes
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._bytes = 0

    def keys(self) -> List[ResolvedKey]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def stats(self) -> Dict[str, object]:
        with self._lock:
            lookups = self.hits + self.misses + self.shared
            return {
                "entries": len(self._entries),
                "bytes": self._bytes,
                "max_bytes": self.max_bytes,
                "max_entries": self.max_entries,
                "inflight": len(self._inflight),
                "hits": self.hits,
                "misses": self.misses,
                "shared": self.shared,
                "hit_ratio_pct": round(100.0 * self.hits / lookups, 2) if lookups else 0.0,
                "computations": self.computations,
                "failures": self.failures,
                "evictions": self.evictions,
                "oversize": self.oversize,
                "timeouts": self.timeouts,
                "compute_ms": self._compute_ms.to_dict(),
            }

    def close(self, wait: bool = True) -> None:
        """Stop accepting computations; running ones finish (and are stored) when wait=True."""
        with self._lock:
            self._closed = True
            threads = list(self._threads.values())
        if wait:
            for t in threads:
                t.join()

    def __enter__(self) -> "ArtifactCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------- internals --------

    def _run(self, key: ResolvedKey, compute: Compute, fut: Future) -> None:
        try:
            data, elapsed_ms = timer_ms(compute)()
            if not isinstance(data, (bytes, bytearray, memoryview)):
                raise TransformFailure(f"Computation returned {type(data).__name__}, expected bytes")
            data = bytes(data)
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
                self._threads.pop(key, None)
                self.computations += 1
                self.failures += 1
            log.warning("Artifact computation failed", extra={"extra": {"key": str(key), "error": repr(e)}})
            fut.set_exception(e)
            return

        with self._lock:
            self.computations += 1
            self._compute_ms.add(elapsed_ms)
            _, evicted = self._insert(key, data)
            self._inflight.pop(key, None)
            self._threads.pop(key, None)
        self._log_evictions(evicted)
        log.debug(
            "Artifact computed",
            extra={"extra": {"key": str(key), "bytes": len(data), "ms": round(elapsed_ms, 2)}},
        )
        fut.set_result(data)

    def _wait(self, key: ResolvedKey, fut: Future, timeout: Optional[float]) -> bytes:
        try:
            return fut.result(timeout=timeout)
        except FutureTimeout:
            with self._lock:
                self.timeouts += 1
            raise Timeout(f"Timed out after {timeout}s waiting for '{key}'.", name=key.name) from None

    def _touch(self, entry: CacheEntry) -> None:
        # caller holds _lock
        entry.last_access = time.monotonic()
        self._entries.move_to_end(entry.key)

    def _insert(self, key: ResolvedKey, data: bytes):
        # caller holds _lock; returns (stored, evicted_keys)
        size = len(data)
        if size > self.max_bytes:
            self.oversize += 1
            return False, []

        old = self._entries.pop(key, None)
        if old is not None:
            self._bytes -= old.size_bytes

        evicted: List[ResolvedKey] = []
        while self._entries and (
            self._bytes + size > self.max_bytes
            or (self.max_entries is not None and len(self._entries) >= self.max_entries)
        ):
            old_key, old_entry = self._entries.popitem(last=False)
            self._bytes -= old_entry.size_bytes
            self.evictions += 1
            evicted.append(old_key)

        self._entries[key] = CacheEntry(key=key, data=data, size_bytes=size, last_access=time.monotonic())
        self._bytes += size
        return True, evicted

    def _log_evictions(self, evicted: List[ResolvedKey]) -> None:
        for k in evicted:
            log.debug("Evicted artifact", extra={"extra": {"key": str(k)}})
