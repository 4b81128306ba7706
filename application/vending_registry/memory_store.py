"""Process-local RemoteStore used for offline runs and tests."""
from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from .ports import SERVER_TIMESTAMP, ErrorCallback, SnapshotCallback, StoredDocument

log = logging.getLogger("vending-registry")


class _Listener:
    def __init__(self, store: "InMemoryStore", collection: str, order_by: str,
                 descending: bool, on_snapshot: SnapshotCallback):
        self.store = store
        self.collection = collection
        self.order_by = order_by
        self.descending = descending
        self.on_snapshot = on_snapshot
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.store._remove_listener(self)


class InMemoryStore:
    """Documents keyed by collection and store-assigned id.

    Every write is stamped with a strictly increasing UTC time and pushes the
    full ordered collection to its listeners, mirroring a hosted document
    store's snapshot listeners.
    """

    def __init__(self):
        self._docs: Dict[str, Dict[str, Tuple[Dict[str, Any], datetime]]] = {}
        self._listeners: List[_Listener] = []
        self._lock = threading.RLock()
        self._last_ts: Optional[datetime] = None

    def _now(self) -> datetime:
        ts = datetime.now(timezone.utc)
        if self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + timedelta(microseconds=1)
        self._last_ts = ts
        return ts

    @staticmethod
    def _materialize(data: Dict[str, Any], ts: datetime) -> Dict[str, Any]:
        return {k: (ts.isoformat() if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

    def _collection(self, collection: str):
        return self._docs.setdefault(collection, {})

    def _ordered(self, collection: str, order_by: str, descending: bool) -> List[StoredDocument]:
        docs = [
            StoredDocument(id=doc_id, data=dict(data), updated_at=ts)
            for doc_id, (data, ts) in self._collection(collection).items()
        ]

        def key(d: StoredDocument):
            if order_by in ("last_updated", "_modified"):
                return d.updated_at
            return d.data.get(order_by)

        return sorted(docs, key=key, reverse=descending)

    def _notify(self, collection: str) -> None:
        with self._lock:
            targets = [lst for lst in self._listeners if lst.collection == collection]
            pushes = [(lst, self._ordered(collection, lst.order_by, lst.descending)) for lst in targets]
        for lst, docs in pushes:
            if not lst.closed:
                lst.on_snapshot(docs)

    def _remove_listener(self, listener: _Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # -- RemoteStore -----------------------------------------------------

    def create(self, collection: str, data: Dict[str, Any]) -> str:
        with self._lock:
            doc_id = uuid.uuid4().hex
            ts = self._now()
            self._collection(collection)[doc_id] = (self._materialize(data, ts), ts)
        self._notify(collection)
        return doc_id

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                raise KeyError(f"no document {doc_id!r} in {collection!r}")
            current, _ = docs[doc_id]
            ts = self._now()
            docs[doc_id] = ({**current, **self._materialize(data, ts)}, ts)
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collection(collection).pop(doc_id, None)
        if removed is not None:
            self._notify(collection)

    def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        with self._lock:
            item = self._collection(collection).get(doc_id)
        if item is None:
            return None
        data, ts = item
        return StoredDocument(id=doc_id, data=dict(data), updated_at=ts)

    def query(self, collection: str, *, order_by: str, descending: bool = True,
              where: Optional[Dict[str, Any]] = None) -> List[StoredDocument]:
        with self._lock:
            docs = self._ordered(collection, order_by, descending)
        for k, v in (where or {}).items():
            docs = [d for d in docs if d.data.get(k) == v]
        return docs

    def subscribe(self, collection: str, *, order_by: str,
                  on_snapshot: SnapshotCallback,
                  on_error: Optional[ErrorCallback] = None,
                  descending: bool = True) -> _Listener:
        listener = _Listener(self, collection, order_by, descending, on_snapshot)
        with self._lock:
            self._listeners.append(listener)
            initial = self._ordered(collection, order_by, descending)
        log.debug("in-memory listener attached to %s", collection)
        on_snapshot(initial)
        return listener
