"""Field rules for vending machine records.

``validate`` runs every rule and reports all failures in a fixed order:
latitude, longitude, description, payment methods, category, status.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .config import CONFIG
from .models import Category, OperatingStatus, PaymentMethod, RecordCandidate, parse_enum

_TAG_RE = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def validate_latitude(value: Any) -> bool:
    return _is_number(value) and -90 <= value <= 90


def validate_longitude(value: Any) -> bool:
    return _is_number(value) and -180 <= value <= 180


def validate_coordinates(coords: Any) -> bool:
    if coords is None:
        return False
    return validate_latitude(getattr(coords, "latitude", None)) and validate_longitude(
        getattr(coords, "longitude", None)
    )


def validate_description(value: Any, max_length: Optional[int] = None) -> bool:
    max_length = max_length or CONFIG["DESCRIPTION_MAX_LENGTH"]
    if not isinstance(value, str):
        return False
    text = value.strip()
    return 0 < len(text) <= max_length


def validate_payment_methods(values: Any) -> bool:
    """Non-empty, every entry a known method, no entry repeated."""
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        return False
    values = list(values)
    if not values:
        return False
    parsed = [parse_enum(PaymentMethod, v) for v in values]
    if any(p is None for p in parsed):
        return False
    return len(set(parsed)) == len(parsed)


def validate_image_file(
    size: int,
    media_type: str,
    max_size: Optional[int] = None,
    allowed_types: Optional[Iterable[str]] = None,
) -> bool:
    max_size = CONFIG["MAX_IMAGE_BYTES"] if max_size is None else max_size
    allowed = tuple(allowed_types or CONFIG["ALLOWED_IMAGE_TYPES"])
    if size > max_size:
        return False
    return (media_type or "").lower() in allowed


def validate(candidate: RecordCandidate) -> ValidationResult:
    errors: List[str] = []

    if not validate_latitude(candidate.latitude):
        errors.append("Invalid latitude: must be between -90 and 90")

    if not validate_longitude(candidate.longitude):
        errors.append("Invalid longitude: must be between -180 and 180")

    desc = candidate.description
    if not isinstance(desc, str) or not desc.strip():
        errors.append("Description is required")
    elif not validate_description(desc):
        errors.append(
            f"Description must be {CONFIG['DESCRIPTION_MAX_LENGTH']} characters or less"
        )

    methods = candidate.payment_methods
    if not methods:
        errors.append("At least one payment method is required")
    elif not validate_payment_methods(methods):
        errors.append("Invalid payment methods")

    if parse_enum(Category, candidate.category) is None:
        errors.append("Invalid category")

    if parse_enum(OperatingStatus, candidate.status) is None:
        errors.append("Invalid operating status")

    return ValidationResult(valid=not errors, errors=errors)


def sanitize_input(value: Any) -> str:
    """Trim and strip HTML tags and stray angle brackets; keeps ``&``."""
    if not value or not isinstance(value, str):
        return ""
    return _TAG_RE.sub("", value.strip()).replace("<", "").replace(">", "")
