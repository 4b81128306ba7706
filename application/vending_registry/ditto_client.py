"""Remote store backed by the Eclipse Ditto HTTP API.

Each collection maps to a Ditto namespace (``<DITTO_NAMESPACE>.<collection>``)
and each document to one Thing whose ``attributes`` hold the record fields.
Ditto stamps ``_modified`` on every write, which is the authoritative
"last updated" time and the sort key. Other ``SERVER_TIMESTAMP`` placeholders
are resolved to the request time before sending.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .config import CONFIG, DITTO_BASE_URL, DITTO_NAMESPACE, DITTO_PASS, DITTO_USER
from .errors import SubscriptionError
from .models import parse_timestamp
from .ports import SERVER_TIMESTAMP, ErrorCallback, SnapshotCallback, StoredDocument

log = logging.getLogger("vending-registry")

_FIELDS = "thingId,attributes,_modified"


def _quote(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value))


class DittoClient:
    def __init__(
        self,
        base_url: str | None = None,
        user: str | None = None,
        password: str | None = None,
        namespace: str | None = None,
        session: requests.Session | None = None,
    ):
        self.base = (base_url or DITTO_BASE_URL).rstrip("/")
        self.namespace = namespace or DITTO_NAMESPACE
        self.session = session or requests.Session()
        self.session.auth = (user or DITTO_USER, password or DITTO_PASS)
        self.session.headers.update({"Content-Type": "application/json"})

    # -- helpers ---------------------------------------------------------

    def _ns(self, collection: str) -> str:
        return f"{self.namespace}.{collection}"

    def _thing_url(self, doc_id: str) -> str:
        return f"{self.base}/api/2/things/{doc_id}"

    def _sort_field(self, order_by: str) -> str:
        # every write refreshes _modified, so "last updated" is Ditto's own clock
        return "_modified" if order_by in ("last_updated", "_modified") else f"attributes/{order_by}"

    @staticmethod
    def _to_doc(thing: Dict[str, Any]) -> StoredDocument:
        return StoredDocument(
            id=str(thing.get("thingId", "")),
            data=dict(thing.get("attributes") or {}),
            updated_at=parse_timestamp(thing.get("_modified")),
        )

    @staticmethod
    def _resolve_sentinels(data: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

    # -- writes ----------------------------------------------------------

    def create(self, collection: str, data: Dict[str, Any]) -> str:
        payload = {"_namespace": self._ns(collection), "attributes": self._resolve_sentinels(data)}
        r = self.session.post(f"{self.base}/api/2/things", data=json.dumps(payload))
        if r.status_code >= 400:
            log.error("Ditto create failed → %s %s", r.status_code, r.text)
        r.raise_for_status()
        try:
            thing_id = (r.json() or {}).get("thingId")
        except ValueError:
            thing_id = None
        if not thing_id:
            # fall back to the Location header: .../api/2/things/<thingId>
            thing_id = (r.headers.get("Location") or "").rstrip("/").rsplit("/", 1)[-1]
        if not thing_id:
            raise requests.HTTPError("Ditto did not return a thingId", response=r)
        return thing_id

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        patch_doc = {"attributes": self._resolve_sentinels(data)}
        headers = {
            **self.session.headers,
            "Content-Type": "application/merge-patch+json",
        }
        r = self.session.patch(self._thing_url(doc_id), data=json.dumps(patch_doc), headers=headers)
        r.raise_for_status()

    def delete(self, collection: str, doc_id: str) -> None:
        r = self.session.delete(self._thing_url(doc_id))
        if r.status_code == 404:
            return
        r.raise_for_status()

    # -- reads -----------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        r = self.session.get(self._thing_url(doc_id), params={"fields": _FIELDS})
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return self._to_doc(r.json() or {})

    def query(
        self,
        collection: str,
        *,
        order_by: str,
        descending: bool = True,
        where: Optional[Dict[str, Any]] = None,
    ) -> List[StoredDocument]:
        sort = f"sort({'-' if descending else '+'}{self._sort_field(order_by)})"
        size = CONFIG["SEARCH_PAGE_SIZE"]
        params: Dict[str, Any] = {"namespaces": self._ns(collection), "fields": _FIELDS}
        conds = [f"eq(attributes/{k},{_quote(v)})" for k, v in (where or {}).items()]
        if len(conds) == 1:
            params["filter"] = conds[0]
        elif conds:
            params["filter"] = f"and({','.join(conds)})"

        docs: List[StoredDocument] = []
        cursor: Optional[str] = None
        while True:
            option = f"{sort},size({size})" + (f",cursor({cursor})" if cursor else "")
            r = self.session.get(f"{self.base}/api/2/search/things", params={**params, "option": option})
            r.raise_for_status()
            page = r.json() or {}
            docs.extend(self._to_doc(t) for t in page.get("items") or [])
            cursor = page.get("cursor")
            if not cursor:
                return docs

    def subscribe(
        self,
        collection: str,
        *,
        order_by: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
        descending: bool = True,
    ) -> "ChangeFeed":
        feed = ChangeFeed(self, collection, order_by, descending, on_snapshot, on_error)
        feed.start()
        return feed


class ChangeFeed:
    """Server-sent-events listener that re-queries the full collection on change.

    Ditto pushes per-Thing deltas; consumers expect the complete ordered
    result set, so every event triggers one search query.
    """

    def __init__(
        self,
        client: DittoClient,
        collection: str,
        order_by: str,
        descending: bool,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ):
        self.client = client
        self.collection = collection
        self.order_by = order_by
        self.descending = descending
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self._stop = threading.Event()
        self._response: Optional[requests.Response] = None
        self._thread = threading.Thread(target=self._run, name=f"ditto-feed-{collection}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def close(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        resp = self._response
        if resp is not None:
            try:
                resp.close()
            except requests.RequestException:
                log.debug("error while closing change stream", exc_info=True)
        log.info("Ditto change feed closed for %s", self.collection)

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def _push(self) -> None:
        docs = self.client.query(self.collection, order_by=self.order_by, descending=self.descending)
        if not self._stop.is_set():
            self.on_snapshot(docs)

    def _fail(self, exc: Exception) -> None:
        if self._stop.is_set():
            return
        log.error("Ditto change feed failed for %s: %s", self.collection, exc)
        self._stop.set()
        if self.on_error is not None:
            self.on_error(exc)

    def _run(self) -> None:
        url = f"{self.client.base}/api/2/things"
        params = {"namespaces": self.client._ns(self.collection), "fields": _FIELDS}
        try:
            resp = self.client.session.get(
                url, params=params, headers={"Accept": "text/event-stream"}, stream=True
            )
            resp.raise_for_status()
            self._response = resp
            if self._stop.is_set():
                resp.close()
                return
            log.info("Ditto change feed opened for %s", self.collection)
            self._push()
        except (requests.RequestException, ValueError) as e:
            self._fail(SubscriptionError(f"could not open change feed: {e}"))
            return

        try:
            for line in resp.iter_lines(decode_unicode=True):
                if self._stop.is_set():
                    return
                if line and line.startswith("data:") and line[5:].strip():
                    self._push()
        except Exception as e:  # closing the response mid-read surfaces as assorted urllib3 errors
            if not self._stop.is_set():
                self._fail(SubscriptionError(f"change feed interrupted: {e}"))
