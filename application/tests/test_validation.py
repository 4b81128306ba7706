import math

from conftest import make_candidate

from vending_registry.models import Category, Coordinates, OperatingStatus, PaymentMethod
from vending_registry.validation import (
    sanitize_input,
    validate,
    validate_coordinates,
    validate_description,
    validate_image_file,
    validate_latitude,
    validate_longitude,
    validate_payment_methods,
)


def test_valid_candidate_has_no_errors() -> None:
    result = validate(make_candidate())
    assert result.valid
    assert result.errors == []


def test_wire_strings_are_accepted_for_enums() -> None:
    result = validate(
        make_candidate(category="ice", status="maintenance", payment_methods=["cash", "qr_code"])
    )
    assert result.valid


def test_collects_every_error_in_order() -> None:
    result = validate(
        make_candidate(
            latitude=91,
            longitude=181,
            description="   ",
            payment_methods=[],
            category="snacks",
            status="closed",
        )
    )
    assert not result.valid
    assert result.errors == [
        "Invalid latitude: must be between -90 and 90",
        "Invalid longitude: must be between -180 and 180",
        "Description is required",
        "At least one payment method is required",
        "Invalid category",
        "Invalid operating status",
    ]


def test_three_distinct_errors_for_bad_coordinates_and_payments() -> None:
    result = validate(make_candidate(latitude=91, longitude=181, payment_methods=[]))
    assert len(set(result.errors)) >= 3


def test_coordinate_rules() -> None:
    assert validate_latitude(-90) and validate_latitude(90)
    assert not validate_latitude(90.0001)
    assert not validate_latitude(math.nan)
    assert not validate_latitude(math.inf)
    assert not validate_latitude("35.6")
    assert not validate_latitude(True)
    assert validate_longitude(-180) and validate_longitude(180)
    assert not validate_longitude(-180.5)
    assert validate_coordinates(Coordinates(10, 20))
    assert not validate_coordinates(None)


def test_description_rules() -> None:
    assert validate_description("x")
    assert validate_description("a" * 500)
    assert not validate_description("a" * 501)
    assert not validate_description("")
    assert not validate_description("  \n ")
    assert not validate_description(None)
    assert validate(make_candidate(description="a" * 501)).errors == [
        "Description must be 500 characters or less"
    ]


def test_payment_method_rules() -> None:
    assert validate_payment_methods([PaymentMethod.CASH, PaymentMethod.CARD])
    assert not validate_payment_methods([])
    assert not validate_payment_methods(["cash", "cash"])
    assert not validate_payment_methods(["cash", PaymentMethod.CASH])
    assert not validate_payment_methods(["bitcoin"])
    assert not validate_payment_methods("cash")
    result = validate(make_candidate(payment_methods=["cash", "cash"]))
    assert result.errors == ["Invalid payment methods"]


def test_enum_members_of_the_wrong_type_are_rejected() -> None:
    result = validate(make_candidate(category=OperatingStatus.OPERATING, status=Category.FOOD))
    assert result.errors == ["Invalid category", "Invalid operating status"]


def test_validate_image_file() -> None:
    assert validate_image_file(1024, "image/jpeg")
    assert validate_image_file(10 * 1024 * 1024, "image/webp")
    assert not validate_image_file(10 * 1024 * 1024 + 1, "image/png")
    assert not validate_image_file(10, "application/pdf")
    assert validate_image_file(10, "image/bmp", allowed_types=["image/bmp"])


def test_sanitize_input() -> None:
    assert sanitize_input("  <b>Cold</b> drinks & snacks ") == "Cold drinks & snacks"
    assert sanitize_input("3 < 5") == "3  5"
    assert sanitize_input(None) == ""
    assert sanitize_input(42) == ""
