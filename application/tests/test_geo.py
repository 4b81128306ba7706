import pytest

from vending_registry.geo import (
    classify_position_error,
    distance,
    format_distance,
    nearby,
    sort_by_distance,
)
from vending_registry.models import Coordinates, Record, Category, OperatingStatus, PaymentMethod
from vending_registry.ports import GeolocationFailure


def _rec(rid: str, lat: float, lon: float) -> Record:
    return Record(
        id=rid,
        latitude=lat,
        longitude=lon,
        description=rid,
        category=Category.FOOD,
        status=OperatingStatus.OPERATING,
        payment_methods=(PaymentMethod.CASH,),
    )


SHINJUKU = Coordinates(35.6895, 139.6917)
SHIBUYA = Coordinates(35.6580, 139.7016)


def test_distance_is_zero_for_same_point() -> None:
    assert distance(SHINJUKU, SHINJUKU) == 0.0


def test_distance_is_symmetric() -> None:
    pairs = [
        (SHINJUKU, SHIBUYA),
        (Coordinates(-33.86, 151.21), Coordinates(51.5, -0.12)),
        (Coordinates(0, 0), Coordinates(0, 180)),
    ]
    for a, b in pairs:
        assert distance(a, b) == pytest.approx(distance(b, a))


def test_distance_between_nearby_stations() -> None:
    d = distance(SHINJUKU, SHIBUYA)
    assert 3.0 < d < 4.0


def test_distance_across_dateline_takes_short_path() -> None:
    d = distance(Coordinates(0, 179.9), Coordinates(0, -179.9))
    assert d < 50
    assert d == pytest.approx(22.24, abs=0.05)


def test_distance_pole_to_pole() -> None:
    d = distance(Coordinates(90, 0), Coordinates(-90, 0))
    assert d == pytest.approx(20000, rel=0.005)


def test_format_distance_meters_and_kilometers() -> None:
    assert format_distance(0.5) == "500m"
    assert format_distance(2.567) == "2.6km"
    assert format_distance(2.567, 2) == "2.57km"
    assert format_distance(1) == "1.0km"


def test_format_distance_ignores_sign() -> None:
    assert format_distance(-0.5) == "500m"
    assert format_distance(-3.21) == "3.2km"


def test_format_distance_rounds_half_up_at_meter_boundary() -> None:
    assert format_distance(0.0005) == "1m"
    assert format_distance(0.0004) == "0m"
    assert format_distance(0.0125) == "13m"


def test_format_distance_custom_units() -> None:
    assert format_distance(0.25, units={"meters": " metres"}) == "250 metres"
    assert format_distance(12.0, 0, {"kilometers": " km"}) == "12 km"


def test_sort_by_distance_orders_without_mutating_input() -> None:
    far = _rec("far", 34.70, 135.50)
    near = _rec("near", 35.66, 139.70)
    mid = _rec("mid", 35.45, 139.63)
    records = [far, near, mid]
    snapshot = list(records)

    ranked = sort_by_distance(records, SHINJUKU)

    assert records == snapshot
    assert len(ranked) == len(records)
    assert [x.record.id for x in ranked] == ["near", "mid", "far"]
    dists = [x.distance_km for x in ranked]
    assert dists == sorted(dists)


def test_sort_by_distance_keeps_tie_order() -> None:
    a = _rec("a", 35.0, 139.0)
    b = _rec("b", 35.0, 139.0)
    c = _rec("c", 35.0, 139.0)
    ranked = sort_by_distance([b, a, c], Coordinates(36.0, 139.0))
    assert [x.record.id for x in ranked] == ["b", "a", "c"]


def test_nearby_applies_radius_and_limit() -> None:
    records = [_rec("osaka", 34.70, 135.50), _rec("shibuya", 35.658, 139.7016), _rec("shinjuku", 35.6896, 139.6917)]
    within = nearby(records, SHINJUKU, radius_km=10)
    assert [x.record.id for x in within] == ["shinjuku", "shibuya"]
    assert [x.record.id for x in nearby(records, SHINJUKU, limit=1)] == ["shinjuku"]


def test_classify_position_error() -> None:
    assert classify_position_error(1).failure is GeolocationFailure.PERMISSION_DENIED
    assert classify_position_error(2).failure is GeolocationFailure.POSITION_UNAVAILABLE
    assert classify_position_error(3).failure is GeolocationFailure.TIMEOUT
    assert classify_position_error(None).failure is GeolocationFailure.UNSUPPORTED
