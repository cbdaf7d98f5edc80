"""
Bid Intake Validation - Server-Side Checks Before Resolution

Validates an untrusted bid submission against the place and the booking
window. Pure: no side effects, the caller supplies "today" and whether the
student already holds an active bid on the place.

Checks run in a fixed order and the first failure wins:
1. Place exists and is LIVE
2. today <= check-in <= today + window (inclusive)
3. check-out strictly after check-in
4. No night in [check-in, check-out) is blacked out or on a disallowed weekday
5. Bid per night is finite and positive
6. No other non-REJECTED bid by this student on this place
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Final, Iterator, Optional, Union

from core.bidding.errors import ErrorKind
from core.bidding.money import to_money
from core.bidding.schema import Place, day_of_week


DEFAULT_BID_WINDOW_DAYS: Final[int] = 30


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class IntakeAccepted:
    """Returned when a submission passes every intake check."""

    place: Place
    check_in_date: date
    check_out_date: date
    bid_per_night: Decimal
    total_nights: int


@dataclass(frozen=True)
class IntakeRejected:
    """Returned for the first intake check that fails."""

    kind: ErrorKind
    reason: str


IntakeResult = Union[IntakeAccepted, IntakeRejected]


# =============================================================================
# Helpers
# =============================================================================


def parse_date(value: Any) -> Optional[date]:
    """
    Coerce an untrusted date value to a calendar date.

    Accepts date, datetime (time of day stripped) or an ISO 8601 date or
    date-time string. The whole string must parse; trailing garbage and
    out-of-range times are rejected. Returns None otherwise.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def iter_nights(check_in: date, check_out: date) -> Iterator[date]:
    """Yield each night in [check_in, check_out)."""
    day = check_in
    while day < check_out:
        yield day
        day += timedelta(days=1)


def nights_between(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days


# =============================================================================
# Validation
# =============================================================================


def validate_bid_intake(
    place: Optional[Place],
    check_in_date: Any,
    check_out_date: Any,
    bid_per_night: Any,
    today: date,
    has_active_bid: bool,
    window_days: int = DEFAULT_BID_WINDOW_DAYS,
) -> IntakeResult:
    """
    Validate a bid submission.

    Args:
        place: The place being bid on, or None if the id did not resolve
        check_in_date: Caller-supplied check-in (untrusted)
        check_out_date: Caller-supplied check-out, exclusive (untrusted)
        bid_per_night: Caller-supplied nightly rate (untrusted)
        today: Current date, time of day already stripped
        has_active_bid: Whether the student holds a non-REJECTED bid here
        window_days: Booking window length in days

    Returns:
        IntakeAccepted with normalised values, or IntakeRejected
    """
    if place is None or not place.is_live:
        return IntakeRejected(
            kind=ErrorKind.PLACE_UNAVAILABLE,
            reason="This place is not available for bidding",
        )

    check_in = parse_date(check_in_date)
    if check_in is None:
        return IntakeRejected(
            kind=ErrorKind.INVALID_DATE_RANGE,
            reason="Please provide a valid check-in date",
        )

    latest = today + timedelta(days=window_days)
    if check_in < today or check_in > latest:
        return IntakeRejected(
            kind=ErrorKind.DATE_OUT_OF_WINDOW,
            reason=(
                f"Check-in must be between {today.isoformat()} and "
                f"{latest.isoformat()}"
            ),
        )

    check_out = parse_date(check_out_date)
    if check_out is None or check_out <= check_in:
        return IntakeRejected(
            kind=ErrorKind.INVALID_DATE_RANGE,
            reason="Check-out date must be after check-in date",
        )

    for night in iter_nights(check_in, check_out):
        if night in place.blackout_dates:
            return IntakeRejected(
                kind=ErrorKind.DATE_BLOCKED,
                reason=(
                    f"The place is not available on {night.isoformat()}. "
                    "Please choose different dates."
                ),
            )
        if day_of_week(night) not in place.allowed_days_of_week:
            return IntakeRejected(
                kind=ErrorKind.DATE_BLOCKED,
                reason=f"The place does not accept stays on {night.strftime('%A')}s",
            )

    amount = to_money(bid_per_night)
    if amount is None or amount <= 0:
        return IntakeRejected(
            kind=ErrorKind.INVALID_BID_AMOUNT,
            reason="Bid per night must be a number greater than 0",
        )

    if has_active_bid:
        return IntakeRejected(
            kind=ErrorKind.DUPLICATE_BID,
            reason="You already have an active bid for this place",
        )

    return IntakeAccepted(
        place=place,
        check_in_date=check_in,
        check_out_date=check_out,
        bid_per_night=amount,
        total_nights=nights_between(check_in, check_out),
    )
