"""Live mirror of the whole record collection.

``RegistrySync`` owns exactly one continuous subscription and the snapshot it
feeds. Every push replaces the snapshot wholesale (the store sends the full
ordered result set, not deltas) and is handed to observers synchronously.

States: uninitialized -> subscribing -> live -> (error | closed).
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .config import CONFIG
from .errors import SubscriptionError
from .models import Record, decode_documents
from .ports import RemoteStore, StoredDocument, Subscription

log = logging.getLogger("vending-registry")

SnapshotObserver = Callable[[Tuple[Record, ...]], None]
ErrorObserver = Callable[[SubscriptionError], None]


class SyncState(Enum):
    UNINITIALIZED = "uninitialized"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    ERROR = "error"
    CLOSED = "closed"


class _Observer:
    def __init__(self, on_snapshot: SnapshotObserver, on_error: Optional[ErrorObserver]):
        self.on_snapshot = on_snapshot
        self.on_error = on_error


class RegistrySync:
    def __init__(
        self,
        store: RemoteStore,
        collection: str | None = None,
        observers: Optional[List[Tuple[SnapshotObserver, Optional[ErrorObserver]]]] = None,
    ):
        self.store = store
        self.collection = collection or CONFIG["COLLECTION"]
        self._lock = threading.RLock()
        self._ready = threading.Event()
        self._observers: List[_Observer] = [_Observer(s, e) for s, e in (observers or [])]
        self._snapshot: Tuple[Record, ...] = ()
        self._error: Optional[SubscriptionError] = None
        self._subscription: Optional[Subscription] = None
        self.state = SyncState.UNINITIALIZED
        self._open()

    # -- lifecycle -------------------------------------------------------

    def _open(self) -> None:
        self.state = SyncState.SUBSCRIBING
        try:
            sub = self.store.subscribe(
                self.collection,
                order_by="last_updated",
                descending=True,
                on_snapshot=self._on_snapshot,
                on_error=self._on_error,
            )
        except Exception as e:
            self._on_error(e)
            return
        with self._lock:
            if self.state is SyncState.CLOSED:
                # closed from inside an observer during the initial push
                sub.close()
                return
            self._subscription = sub
        log.info("registry subscribed to %s", self.collection)

    def close(self) -> None:
        """Stop notifications and release the subscription. Safe to repeat."""
        with self._lock:
            if self.state is SyncState.CLOSED:
                return
            self.state = SyncState.CLOSED
            sub, self._subscription = self._subscription, None
            self._observers = []
            self._ready.set()
        if sub is not None:
            sub.close()
        log.info("registry for %s closed", self.collection)

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the first snapshot or a terminal error arrives."""
        return self._ready.wait(timeout)

    # -- observers -------------------------------------------------------

    def add_observer(
        self, on_snapshot: SnapshotObserver, on_error: Optional[ErrorObserver] = None
    ) -> Callable[[], None]:
        """Register for future pushes; returns a callable that unregisters.

        Registering after the subscription failed delivers that error at once.
        """
        obs = _Observer(on_snapshot, on_error)
        with self._lock:
            if self.state is SyncState.CLOSED:
                return lambda: None
            self._observers.append(obs)
            error = self._error if self.state is SyncState.ERROR else None
        if error is not None and on_error is not None:
            on_error(error)

        def remove() -> None:
            with self._lock:
                if obs in self._observers:
                    self._observers.remove(obs)

        return remove

    # -- reads -----------------------------------------------------------

    @property
    def snapshot(self) -> Tuple[Record, ...]:
        return self._snapshot

    @property
    def error(self) -> Optional[SubscriptionError]:
        return self._error

    def find(self, record_id: str) -> Optional[Record]:
        for rec in self._snapshot:
            if rec.id == record_id:
                return rec
        return None

    # -- store callbacks -------------------------------------------------

    def _on_snapshot(self, docs: List[StoredDocument]) -> None:
        with self._lock:
            if self.state not in (SyncState.SUBSCRIBING, SyncState.LIVE):
                return
            self._snapshot = decode_documents(docs)
            self.state = SyncState.LIVE
            self._ready.set()
            snapshot = self._snapshot
            for obs in list(self._observers):
                if self.state is SyncState.CLOSED:
                    break
                try:
                    obs.on_snapshot(snapshot)
                except Exception:
                    # observer errors never reach the store
                    log.exception("snapshot observer failed")

    def _on_error(self, exc: Exception) -> None:
        with self._lock:
            if self.state in (SyncState.ERROR, SyncState.CLOSED):
                return
            err = exc if isinstance(exc, SubscriptionError) else SubscriptionError(str(exc))
            if err is not exc:
                err.__cause__ = exc
            self._error = err
            self.state = SyncState.ERROR
            self._ready.set()
            log.error("registry subscription for %s failed: %s", self.collection, err)
            observers = list(self._observers)
        for obs in observers:
            if obs.on_error is None:
                continue
            try:
                obs.on_error(err)
            except Exception:
                log.exception("error observer failed")
