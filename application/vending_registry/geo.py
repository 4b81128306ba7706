from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from .models import Coordinates, NearbyRecord, Record
from .ports import GeolocationError, GeolocationFailure

EARTH_RADIUS_KM = 6371.0

DEFAULT_UNITS = {"meters": "m", "kilometers": "km"}


def distance(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometers between two WGS84 points."""
    p1, p2 = math.radians(a.latitude), math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlmb = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(dphi / 2) ** 2
        + math.cos(p1) * math.cos(p2) * math.sin(dlmb / 2) ** 2
    )
    # float noise can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def format_distance(
    km: float,
    decimal_places: int = 1,
    units: Optional[Dict[str, str]] = None,
) -> str:
    """Human readable distance; sub-kilometer values are whole meters."""
    units = {**DEFAULT_UNITS, **(units or {})}
    magnitude = abs(km)
    if magnitude < 1:
        meters = int(math.floor(magnitude * 1000 + 0.5))
        return f"{meters}{units['meters']}"
    return f"{magnitude:.{decimal_places}f}{units['kilometers']}"


def sort_by_distance(records: Iterable[Record], origin: Coordinates) -> List[NearbyRecord]:
    """Records paired with their distance from ``origin``, nearest first.

    Returns a new list; ties keep their input order.
    """
    ranked = [NearbyRecord(r, distance(origin, r.coordinates)) for r in records]
    return sorted(ranked, key=lambda x: x.distance_km)


def nearby(
    records: Iterable[Record],
    origin: Coordinates,
    radius_km: Optional[float] = None,
    limit: Optional[int] = None,
) -> List[NearbyRecord]:
    out = sort_by_distance(records, origin)
    if radius_km is not None:
        out = [x for x in out if x.distance_km <= radius_km]
    if limit is not None:
        out = out[: max(0, limit)]
    return out


_POSITION_ERROR_CODES = {
    1: GeolocationFailure.PERMISSION_DENIED,
    2: GeolocationFailure.POSITION_UNAVAILABLE,
    3: GeolocationFailure.TIMEOUT,
}


def classify_position_error(code: Optional[int]) -> GeolocationError:
    """Map a W3C geolocation error code to a GeolocationError.

    ``None`` means the host has no geolocation support at all.
    """
    if code is None:
        return GeolocationError(GeolocationFailure.UNSUPPORTED,
                                "geolocation is not supported")
    failure = _POSITION_ERROR_CODES.get(code, GeolocationFailure.POSITION_UNAVAILABLE)
    return GeolocationError(failure)
