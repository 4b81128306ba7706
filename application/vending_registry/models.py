"""Domain types and their wire form.

Enumerations are closed ``Enum`` variants inside the package; the string
form they carry is only produced or parsed by the ``*_wire`` functions
used at the remote-store boundary.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Dict, Optional, Tuple

log = logging.getLogger("vending-registry")


class Category(Enum):
    BEVERAGE = "beverage"
    FOOD = "food"
    ICE = "ice"
    TOBACCO = "tobacco"
    MULTI_PURPOSE = "multi_purpose"
    OTHER = "other"


class OperatingStatus(Enum):
    OPERATING = "operating"
    MAINTENANCE = "maintenance"
    OUT_OF_ORDER = "out_of_order"


class PaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    ELECTRONIC_MONEY = "electronic_money"
    QR_CODE = "qr_code"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Record:
    """One vending machine as persisted by the remote store."""
    id: str
    latitude: float
    longitude: float
    description: str
    category: Category
    status: OperatingStatus
    payment_methods: Tuple[PaymentMethod, ...]
    last_updated: Optional[datetime] = None
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    has_image: bool = False
    image_uploaded_at: Optional[datetime] = None

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)


@dataclass
class RecordCandidate:
    """Client-supplied fields for a new record, not yet validated.

    Enum fields may hold members or raw wire strings; the validator decides
    whether they are acceptable.
    """
    latitude: Any
    longitude: Any
    description: Any
    category: Any
    status: Any
    payment_methods: Any = field(default_factory=list)


@dataclass(frozen=True)
class FilterState:
    category: Optional[Category] = None
    status: Optional[OperatingStatus] = None


@dataclass(frozen=True)
class DerivedView:
    records: Tuple[Record, ...]
    total: int
    operating: int
    maintenance: int
    out_of_order: int


@dataclass(frozen=True)
class NearbyRecord:
    record: Record
    distance_km: float


@dataclass(frozen=True)
class Geotag:
    coordinate: Coordinates
    altitude: Optional[float] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ImageFile:
    """An uploaded image as received from the client."""
    name: str
    data: bytes
    media_type: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    image_url: str
    thumbnail_url: str


# ---------------------------------------------------------------------------
# wire form
# ---------------------------------------------------------------------------

def parse_enum(enum_cls, value):
    """Return the ``enum_cls`` member for a member or its wire string, else None."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return None


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return raw
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def candidate_to_wire(candidate: RecordCandidate) -> Dict[str, Any]:
    """Wire attributes for a candidate that already passed validation."""
    return {
        "latitude": float(candidate.latitude),
        "longitude": float(candidate.longitude),
        "description": str(candidate.description).strip(),
        "category": parse_enum(Category, candidate.category).value,
        "status": parse_enum(OperatingStatus, candidate.status).value,
        "payment_methods": [
            parse_enum(PaymentMethod, m).value for m in candidate.payment_methods
        ],
    }


def fields_to_wire(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a partial update to wire attributes (enum members -> strings)."""
    out: Dict[str, Any] = {}
    for k, v in fields.items():
        if isinstance(v, Enum):
            v = v.value
        elif isinstance(v, (list, tuple)):
            v = [x.value if isinstance(x, Enum) else x for x in v]
        elif isinstance(v, datetime):
            v = v.isoformat()
        out[k] = v
    return out


def record_from_wire(record_id: str, attrs: Dict[str, Any], modified: Any = None) -> Record:
    """Build a Record from stored attributes.

    ``has_image`` is true only when the stored flag is set and both URLs are
    present. URLs without the flag belong to an attach that never completed;
    they are kept on the record but the image is not advertised.

    Raises ``ValueError`` when an enum field holds a value outside its
    enumeration; callers at the store boundary decide how to treat such
    documents.
    """
    image_url = attrs.get("image_url") or None
    thumbnail_url = attrs.get("thumbnail_url") or None
    return Record(
        id=record_id,
        latitude=float(attrs["latitude"]),
        longitude=float(attrs["longitude"]),
        description=str(attrs.get("description", "")),
        category=Category(attrs["category"]),
        status=OperatingStatus(attrs["status"]),
        payment_methods=tuple(PaymentMethod(m) for m in attrs.get("payment_methods") or []),
        last_updated=parse_timestamp(modified if modified is not None else attrs.get("last_updated")),
        image_url=image_url,
        thumbnail_url=thumbnail_url,
        has_image=bool(attrs.get("has_image")) and bool(image_url and thumbnail_url),
        image_uploaded_at=parse_timestamp(attrs.get("image_uploaded_at")),
    )


def record_to_dict(rec: Record) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "latitude": rec.latitude,
        "longitude": rec.longitude,
        "description": rec.description,
        "category": rec.category.value,
        "status": rec.status.value,
        "payment_methods": [m.value for m in rec.payment_methods],
        "last_updated": _iso(rec.last_updated),
        "image_url": rec.image_url,
        "thumbnail_url": rec.thumbnail_url,
        "has_image": rec.has_image,
        "image_uploaded_at": _iso(rec.image_uploaded_at),
    }


def view_to_dict(view: DerivedView) -> Dict[str, Any]:
    return {
        "records": [record_to_dict(r) for r in view.records],
        "counts": {
            "total": view.total,
            "operating": view.operating,
            "maintenance": view.maintenance,
            "out_of_order": view.out_of_order,
        },
    }


def decode_documents(docs) -> Tuple[Record, ...]:
    """Records for stored documents, in order; malformed documents are skipped."""
    out = []
    for doc in docs:
        try:
            out.append(record_from_wire(doc.id, doc.data, doc.updated_at))
        except (KeyError, TypeError, ValueError) as e:
            log.warning("skipping malformed record %s: %s", doc.id, e)
    return tuple(out)
