import io
import os
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

from vending_registry.models import Category, OperatingStatus, PaymentMethod, RecordCandidate
from vending_registry.ports import StoredDocument


def make_candidate(**overrides: Any) -> RecordCandidate:
    fields: Dict[str, Any] = {
        "latitude": 35.6895,
        "longitude": 139.6917,
        "description": "Drinks machine by the west exit",
        "category": Category.BEVERAGE,
        "status": OperatingStatus.OPERATING,
        "payment_methods": [PaymentMethod.CASH],
    }
    fields.update(overrides)
    return RecordCandidate(**fields)


def make_doc(doc_id: str, **attrs: Any) -> StoredDocument:
    data = {
        "latitude": 35.0,
        "longitude": 139.0,
        "description": f"machine {doc_id}",
        "category": "beverage",
        "status": "operating",
        "payment_methods": ["cash"],
        "has_image": False,
    }
    data.update(attrs)
    return StoredDocument(id=doc_id, data=data)


def image_bytes(
    width: int = 640,
    height: int = 480,
    fmt: str = "JPEG",
    gps: Optional[Dict[int, Any]] = None,
    taken: Optional[str] = None,
    noise: bool = False,
    quality: int = 90,
) -> bytes:
    if noise:
        im = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    else:
        im = Image.new("RGB", (width, height), (200, 40, 40))
    params: Dict[str, Any] = {}
    if gps is not None or taken is not None:
        exif = Image.Exif()
        if gps is not None:
            exif[0x8825] = gps
        if taken is not None:
            exif[0x8769] = {0x9003: taken}
        params["exif"] = exif
    if fmt in ("JPEG", "WEBP"):
        params["quality"] = quality
    buf = io.BytesIO()
    im.save(buf, format=fmt, **params)
    return buf.getvalue()


class FakeSubscription:
    def __init__(self, on_snapshot, on_error):
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.close_calls = 0

    def push(self, docs: List[StoredDocument]) -> None:
        # delivers even after close, like a transport that raced the teardown
        self.on_snapshot(docs)

    def fail(self, exc: Exception) -> None:
        if self.on_error is not None:
            self.on_error(exc)

    def close(self) -> None:
        self.close_calls += 1


class FakeStore:
    """RemoteStore whose pushes are driven by the test."""

    def __init__(self, fail_subscribe: bool = False):
        self.fail_subscribe = fail_subscribe
        self.subscribe_calls = 0
        self.subscriptions: List[FakeSubscription] = []
        self.writes: List[tuple] = []

    def subscribe(self, collection, *, order_by, on_snapshot, on_error=None, descending=True):
        self.subscribe_calls += 1
        if self.fail_subscribe:
            raise ConnectionError("store unreachable")
        sub = FakeSubscription(on_snapshot, on_error)
        self.subscriptions.append(sub)
        return sub

    def create(self, collection, data):
        self.writes.append(("create", collection, data))
        return "new-id"

    def update(self, collection, doc_id, data):
        self.writes.append(("update", collection, doc_id, data))

    def delete(self, collection, doc_id):
        self.writes.append(("delete", collection, doc_id))

    def get(self, collection, doc_id):
        return None

    def query(self, collection, *, order_by, descending=True, where=None):
        return []


class BrokenStore(FakeStore):
    def create(self, collection, data):
        raise ConnectionError("connection reset")

    def update(self, collection, doc_id, data):
        raise ConnectionError("connection reset")

    def delete(self, collection, doc_id):
        raise ConnectionError("connection reset")


@pytest.fixture
def candidate():
    return make_candidate()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return image_bytes()
