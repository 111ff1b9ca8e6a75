from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from common.logging_setup import get_logger
from imagery.errors import TransformFailure, UnknownImage


log = get_logger("imagery.registry")

NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class BaseImageRegistry:
    """
    Maps base image names to source PNG files.

        root/
          ├─ placeholder.png   -> "placeholder"
          └─ banner_wide.png   -> "banner_wide"

    `extra` entries (name -> path) are added on top of the directory scan and
    win on name clashes. The name set is swapped atomically on rescan(), so
    readers never see a half-built index.
    """
    def __init__(self, root: str = "data/images", extra: Optional[Mapping[str, str]] = None):
        self.root = Path(root)
        self._extra: Dict[str, Path] = {}
        for name, path in (extra or {}).items():
            self._check_name(name)
            self._extra[name] = Path(path)
        self._lock = threading.Lock()
        self._index: Dict[str, Path] = {}
        self.rescan()

    # -------- public API --------

    def names(self) -> List[str]:
        return sorted(self._index)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self._index)

    def path_for(self, name: str) -> Path:
        try:
            return self._index[name]
        except KeyError:
            raise UnknownImage(f"Image '{name}' is not registered.", name=name) from None

    def load(self, name: str) -> bytes:
        """
        Read the source bytes for `name`.
        Raises UnknownImage if the name is not registered or its file vanished,
        TransformFailure if the file exists but cannot be read.
        """
        path = self.path_for(name)
        try:
            with path.open("rb") as f:
                return f.read()
        except FileNotFoundError:
            log.warning("Registered image file missing", extra={"extra": {"name": name, "path": str(path)}})
            raise UnknownImage(f"Image '{name}' was not found.", name=name) from None
        except OSError as e:
            log.error(
                "Registered image file unreadable",
                extra={"extra": {"name": name, "path": str(path), "error": repr(e)}},
            )
            raise TransformFailure(f"Image '{name}' could not be read.", name=name) from e

    def register(self, name: str, path: str) -> None:
        """Add or replace a single entry without rescanning."""
        self._check_name(name)
        with self._lock:
            self._extra[name] = Path(path)
            index = dict(self._index)
            index[name] = Path(path)
            self._index = index

    def unregister(self, name: str) -> None:
        with self._lock:
            self._extra.pop(name, None)
            index = dict(self._index)
            index.pop(name, None)
            self._index = index

    def rescan(self) -> int:
        """Rebuild the index from `root` + extra entries. Returns the number of names."""
        index: Dict[str, Path] = {}
        if self.root.is_dir():
            for png in sorted(self.root.glob("*.png")):
                if not png.is_file() or not NAME_RE.match(png.stem):
                    continue
                index[png.stem] = png
        with self._lock:
            index.update(self._extra)
            self._index = index
        log.info("Image registry scanned", extra={"extra": {"root": str(self.root), "images": len(index)}})
        return len(index)

    def stats(self) -> Dict[str, object]:
        return {"root": str(self.root), "images": len(self._index)}

    # -------- internals --------

    @staticmethod
    def _check_name(name: str) -> None:
        if not NAME_RE.match(name or ""):
            raise ValueError(f"Invalid image name: {name!r}")
