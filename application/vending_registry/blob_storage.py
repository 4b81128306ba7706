from __future__ import annotations

import logging
import pathlib
import threading
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from .config import PUBLIC_BASE_URL, STATIC_MOUNT, UPLOAD_DIR

log = logging.getLogger("vending-registry")


def _safe_parts(path: str) -> List[str]:
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    if not parts or path.startswith("/") or any(p in (".", "..") for p in parts):
        raise ValueError(f"unsafe storage path: {path!r}")
    return parts


class LocalBlobStorage:
    """Blob storage on the local disk, published under the Flask static mount."""

    def __init__(self, root: str | pathlib.Path | None = None, public_base_url: str | None = None):
        self.root = pathlib.Path(root or UPLOAD_DIR)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base = (public_base_url or f"{PUBLIC_BASE_URL.rstrip('/')}{STATIC_MOUNT}").rstrip("/")

    def _file(self, ref: str) -> pathlib.Path:
        return self.root.joinpath(*_safe_parts(ref))

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._file(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            f.write(data)
        log.debug("stored %s (%d bytes, %s)", path, len(data), content_type)
        return path

    def public_url(self, ref: str) -> str:
        return f"{self.public_base}/{quote(ref)}"

    def delete(self, ref: str) -> None:
        # FileNotFoundError propagates: the caller asked for an object that is not there
        self._file(ref).unlink()


class InMemoryBlobStorage:
    """Records every call; ``fail_after`` makes the n-th and later puts fail."""

    def __init__(self, public_base_url: str = "https://blobs.test/static", fail_after: Optional[int] = None):
        self.public_base = public_base_url.rstrip("/")
        self.fail_after = fail_after
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def put(self, path: str, data: bytes, content_type: str) -> str:
        with self._lock:
            self.calls.append(("put", path))
            puts = sum(1 for op, _ in self.calls if op == "put")
            if self.fail_after is not None and puts > self.fail_after:
                raise IOError(f"simulated storage failure for {path}")
            self.objects[path] = (data, content_type)
        return path

    def public_url(self, ref: str) -> str:
        self.calls.append(("public_url", ref))
        return f"{self.public_base}/{quote(ref)}"

    def delete(self, ref: str) -> None:
        with self._lock:
            self.calls.append(("delete", ref))
            if ref not in self.objects:
                raise KeyError(f"no object at {ref}")
            del self.objects[ref]
