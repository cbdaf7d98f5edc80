"""
Place Validation - Validation Logic for Place Listings

Checks raw place data from hosts and admins before a Place is built or
updated. Every problem is collected so the form can show them all at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from core.bidding.errors import InvalidPlaceError
from core.bidding.intake import parse_date
from core.bidding.money import to_money
from core.bidding.schema import (
    ALL_DAYS_OF_WEEK,
    AccommodationType,
    Place,
    PlaceStatus,
    utcnow,
)


# =============================================================================
# Constants
# =============================================================================

REQUIRED_PLACE_FIELDS: Final[tuple[str, ...]] = (
    "name",
    "retail_price",
    "minimum_bid",
)

# Fields a place update may touch
UPDATABLE_PLACE_FIELDS: Final[tuple[str, ...]] = (
    "name",
    "short_description",
    "full_description",
    "city",
    "country",
    "address",
    "email",
    "latitude",
    "longitude",
    "image_urls",
    "accommodation_type",
    "retail_price",
    "minimum_bid",
    "auto_accept_above_minimum",
    "blackout_dates",
    "allowed_days_of_week",
    "status",
    "max_inventory",
)

# Fields that may be cleared by setting them to None
NULLABLE_PLACE_FIELDS: Final[frozenset[str]] = frozenset({"email", "latitude", "longitude"})

# Fields that may still change once a place is referenced by a settled bid
AVAILABILITY_FIELDS: Final[frozenset[str]] = frozenset({
    "blackout_dates",
    "allowed_days_of_week",
    "status",
    "max_inventory",
})


# =============================================================================
# Validation Result
# =============================================================================


@dataclass(frozen=True)
class PlaceValidationResult:
    """Result of place data validation."""

    valid: bool
    missing_fields: tuple[str, ...]
    errors: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "missing_fields": list(self.missing_fields),
            "errors": list(self.errors),
        }


# =============================================================================
# Validation
# =============================================================================


def validate_place_data(data: dict[str, Any]) -> PlaceValidationResult:
    """
    Validate raw place data.

    Args:
        data: Raw place data (for updates, already merged over current values)

    Returns:
        PlaceValidationResult
    """
    errors: list[str] = []
    missing_fields: list[str] = []

    for name in REQUIRED_PLACE_FIELDS:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing_fields.append(name)
            errors.append(f"{name} is required")

    retail_price = None
    if data.get("retail_price") is not None:
        retail_price = to_money(data["retail_price"])
        if retail_price is None or retail_price <= 0:
            errors.append("Retail price must be greater than zero")
            retail_price = None

    minimum_bid = None
    if data.get("minimum_bid") is not None:
        minimum_bid = to_money(data["minimum_bid"])
        if minimum_bid is None or minimum_bid <= 0:
            errors.append("Minimum bid must be greater than zero")
            minimum_bid = None

    if retail_price is not None and minimum_bid is not None and minimum_bid >= retail_price:
        errors.append("Minimum bid must be less than the retail price")

    accommodation_type = data.get("accommodation_type")
    if accommodation_type is not None and not isinstance(accommodation_type, AccommodationType):
        try:
            AccommodationType(str(accommodation_type))
        except ValueError:
            errors.append("Please select a valid accommodation type")

    status = data.get("status")
    if status is not None and not isinstance(status, PlaceStatus):
        try:
            PlaceStatus(str(status))
        except ValueError:
            errors.append("Status must be one of DRAFT, LIVE or PAUSED")

    max_inventory = data.get("max_inventory")
    if max_inventory is not None:
        try:
            if int(max_inventory) < 1:
                errors.append("Max inventory must be at least 1")
        except (ValueError, TypeError):
            errors.append("Please enter a valid number for max inventory")

    days = data.get("allowed_days_of_week")
    if days is not None:
        try:
            day_set = {int(d) for d in days}
        except (ValueError, TypeError):
            errors.append("Allowed days of week must be numbers 0-6")
        else:
            if not day_set:
                errors.append("At least one day of week must be allowed")
            elif not day_set <= ALL_DAYS_OF_WEEK:
                errors.append("Allowed days of week must be numbers 0-6")

    for raw in data.get("blackout_dates") or []:
        if parse_date(raw) is None:
            errors.append(f"Invalid blackout date: {raw}")

    latitude = data.get("latitude")
    if latitude is not None:
        try:
            if not -90 <= float(latitude) <= 90:
                errors.append("Latitude must be between -90 and 90")
        except (ValueError, TypeError):
            errors.append("Please enter a valid latitude")

    longitude = data.get("longitude")
    if longitude is not None:
        try:
            if not -180 <= float(longitude) <= 180:
                errors.append("Longitude must be between -180 and 180")
        except (ValueError, TypeError):
            errors.append("Please enter a valid longitude")

    email = data.get("email")
    if email and "@" not in str(email):
        errors.append("Please enter a valid email address")

    return PlaceValidationResult(
        valid=not errors,
        missing_fields=tuple(missing_fields),
        errors=tuple(errors),
    )


# =============================================================================
# Construction
# =============================================================================


def _coerce_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Convert validated raw values to Place field types."""
    fields: dict[str, Any] = {}
    for name in UPDATABLE_PLACE_FIELDS:
        if name not in data:
            continue
        value = data[name]
        if value is None and name not in NULLABLE_PLACE_FIELDS:
            continue
        if name in ("retail_price", "minimum_bid"):
            value = to_money(value)
        elif name == "accommodation_type" and not isinstance(value, AccommodationType):
            value = AccommodationType(str(value))
        elif name == "status" and not isinstance(value, PlaceStatus):
            value = PlaceStatus(str(value))
        elif name == "blackout_dates":
            value = frozenset(parse_date(d) for d in (value or []))
        elif name == "allowed_days_of_week":
            value = frozenset(int(d) for d in value)
        elif name == "max_inventory":
            value = int(value)
        elif name in ("latitude", "longitude") and value is not None:
            value = float(value)
        elif name == "image_urls":
            value = [str(url) for url in (value or [])]
        elif name == "auto_accept_above_minimum":
            value = bool(value)
        fields[name] = value
    return fields


def create_place(data: dict[str, Any], owner_id: str) -> Place:
    """
    Build a Place from raw data.

    Raises:
        InvalidPlaceError: If validation fails
    """
    validation = validate_place_data(data)
    if not validation.valid:
        raise InvalidPlaceError(list(validation.errors))
    fields = _coerce_fields(data)
    return Place(owner_id=owner_id, **fields)


def update_place(place: Place, changes: dict[str, Any], locked: bool = False) -> Place:
    """
    Apply changes to a place, re-validating the merged result.

    Args:
        place: Current place
        changes: Raw changes (unknown keys ignored)
        locked: Place is referenced by a settled bid; only availability
            fields may change

    Raises:
        InvalidPlaceError: If the merged data is invalid or touches locked fields
    """
    changes = {
        k: v
        for k, v in changes.items()
        if k in UPDATABLE_PLACE_FIELDS and (v is not None or k in NULLABLE_PLACE_FIELDS)
    }
    merged = place.to_dict()
    merged.update(changes)
    validation = validate_place_data(merged)
    if not validation.valid:
        raise InvalidPlaceError(list(validation.errors))

    fields = _coerce_fields(merged)
    if locked:
        frozen = sorted(
            name
            for name, value in fields.items()
            if name not in AVAILABILITY_FIELDS and value != getattr(place, name)
        )
        if frozen:
            raise InvalidPlaceError(
                [f"Place has settled bids; cannot change: {', '.join(frozen)}"]
            )

    updated = Place(
        owner_id=place.owner_id,
        place_id=place.place_id,
        created_at=place.created_at,
        updated_at=utcnow(),
        **fields,
    )
    return updated

