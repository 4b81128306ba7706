from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .config import CONFIG
from .errors import ValidationError, WriteError
from .models import (
    FilterState,
    Record,
    RecordCandidate,
    UploadResult,
    candidate_to_wire,
    decode_documents,
    fields_to_wire,
)
from .ports import SERVER_TIMESTAMP, RemoteStore
from .validation import validate

log = logging.getLogger("vending-registry")

ORDER_BY = "last_updated"


class WriteGateway:
    """Typed create/update/delete against the remote store.

    Nothing is applied locally: the outcome of a write becomes visible only
    when the store pushes its next snapshot to ``RegistrySync``.
    """

    def __init__(self, store: RemoteStore, collection: str | None = None):
        self.store = store
        self.collection = collection or CONFIG["COLLECTION"]

    def create(self, candidate: RecordCandidate) -> str:
        result = validate(candidate)
        if not result.valid:
            raise ValidationError(result.errors)
        data = candidate_to_wire(candidate)
        data.update({"has_image": False, "last_updated": SERVER_TIMESTAMP})
        try:
            record_id = self.store.create(self.collection, data)
        except Exception as e:
            log.error("create failed: %s", e)
            raise WriteError("create", None, str(e)) from e
        log.info("created record %s", record_id)
        return record_id

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        """Apply a partial update. Fields are not re-validated here."""
        data = fields_to_wire(fields)
        data["last_updated"] = SERVER_TIMESTAMP
        try:
            self.store.update(self.collection, record_id, data)
        except Exception as e:
            log.error("update of %s failed: %s", record_id, e)
            raise WriteError("update", record_id, str(e)) from e
        log.info("updated record %s (%s)", record_id, ", ".join(sorted(fields)))

    def attach_image(self, record_id: str, upload: UploadResult) -> None:
        self.update(
            record_id,
            {
                "image_url": upload.image_url,
                "thumbnail_url": upload.thumbnail_url,
                "has_image": True,
                "image_uploaded_at": SERVER_TIMESTAMP,
            },
        )

    def delete(self, record_id: str) -> None:
        # no existence check: deleting an unknown id is a successful no-op
        try:
            self.store.delete(self.collection, record_id)
        except Exception as e:
            log.error("delete of %s failed: %s", record_id, e)
            raise WriteError("delete", record_id, str(e)) from e
        log.info("deleted record %s", record_id)

    def get(self, record_id: str) -> Optional[Record]:
        try:
            doc = self.store.get(self.collection, record_id)
        except Exception as e:
            raise WriteError("get", record_id, str(e)) from e
        if doc is None:
            return None
        records = decode_documents([doc])
        return records[0] if records else None

    def list(self, filters: FilterState | None = None) -> List[Record]:
        """One-shot query, most recently updated first."""
        where: Dict[str, Any] = {}
        if filters is not None and filters.category is not None:
            where["category"] = filters.category.value
        if filters is not None and filters.status is not None:
            where["status"] = filters.status.value
        try:
            docs = self.store.query(self.collection, order_by=ORDER_BY, descending=True,
                                    where=where or None)
        except Exception as e:
            raise WriteError("query", None, str(e)) from e
        return list(decode_documents(docs))
