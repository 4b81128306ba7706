"""Collaborator interfaces: remote store, blob storage, image codec, geolocation."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple


class _ServerTimestamp:
    """Placeholder replaced by the store with its own write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: Dict[str, Any]
    updated_at: Optional[datetime] = None


SnapshotCallback = Callable[[List[StoredDocument]], None]
ErrorCallback = Callable[[Exception], None]


class Subscription(Protocol):
    """Handle for a continuous query; ``close`` must be idempotent."""

    def close(self) -> None: ...


class RemoteStore(Protocol):
    """Port: document store keyed by collection name and record id."""

    def create(self, collection: str, data: Dict[str, Any]) -> str: ...
    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...
    def delete(self, collection: str, doc_id: str) -> None: ...
    def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]: ...

    def query(self, collection: str, *, order_by: str, descending: bool = True,
              where: Optional[Dict[str, Any]] = None) -> List[StoredDocument]: ...

    def subscribe(self, collection: str, *, order_by: str,
                  on_snapshot: SnapshotCallback,
                  on_error: Optional[ErrorCallback] = None,
                  descending: bool = True) -> Subscription: ...


class BlobStorage(Protocol):
    """Port: object storage with public retrieval URLs."""

    def put(self, path: str, data: bytes, content_type: str) -> str: ...
    def public_url(self, ref: str) -> str: ...
    def delete(self, ref: str) -> None: ...


class PixelBuffer(Protocol):
    width: int
    height: int


class ImageCodec(Protocol):
    """Port: decode to a pixel buffer, re-encode at a quality in (0, 1]."""

    def decode(self, data: bytes) -> PixelBuffer: ...
    def encode(self, pixels: PixelBuffer, size: Tuple[int, int],
               quality: float, media_type: str) -> bytes: ...


class GeolocationFailure(Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


class GeolocationError(Exception):
    def __init__(self, failure: GeolocationFailure, message: str = ""):
        self.failure = failure
        super().__init__(message or failure.value)


class GeolocationProvider(Protocol):
    """Port: device position. Implemented by the presentation host, not here."""

    def current_position(self) -> Tuple[float, float]: ...

    def watch_position(self, on_position: Callable[[Tuple[float, float]], None],
                       on_error: Optional[Callable[[GeolocationError], None]] = None
                       ) -> Subscription: ...
