"""
Bidding Errors - Failure Kinds Surfaced by the Engine

Every domain failure carries an ErrorKind so the request surface can map it
to a response without inspecting message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure kinds raised by the bidding engine."""

    # Intake validation
    PLACE_UNAVAILABLE = "PlaceUnavailable"
    DATE_OUT_OF_WINDOW = "DateOutOfWindow"
    INVALID_DATE_RANGE = "InvalidDateRange"
    DATE_BLOCKED = "DateBlocked"
    INVALID_BID_AMOUNT = "InvalidBidAmount"
    DUPLICATE_BID = "DuplicateBid"

    # Lifecycle
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    PAYMENT_NOT_CAPTURED = "PaymentNotCaptured"

    # Supporting surfaces
    INVALID_PLACE = "InvalidPlace"
    INVALID_PAYOUT = "InvalidPayout"
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    PROCESSOR_ERROR = "ProcessorError"
    INVALID_WEBHOOK = "InvalidWebhook"


class BiddingError(Exception):
    """Base class for all bidding engine failures."""

    kind: ErrorKind = ErrorKind.INVALID_STATE_TRANSITION

    def __init__(self, reason: str, kind: Optional[ErrorKind] = None):
        super().__init__(reason)
        self.reason = reason
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "detail": self.reason}


class BidRejectedError(BiddingError):
    """Bid submission failed intake validation; carries the failing kind."""


class DuplicateBidError(BidRejectedError):
    kind = ErrorKind.DUPLICATE_BID


class InvalidStateTransitionError(BiddingError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class PaymentNotCapturedError(BiddingError):
    kind = ErrorKind.PAYMENT_NOT_CAPTURED


class InvalidPlaceError(BiddingError):
    """Place data failed validation. `errors` lists every problem found."""

    kind = ErrorKind.INVALID_PLACE

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class InvalidPayoutError(BiddingError):
    kind = ErrorKind.INVALID_PAYOUT


class NotFoundError(BiddingError):
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(BiddingError):
    kind = ErrorKind.FORBIDDEN


class ProcessorError(BiddingError):
    """Transport or API failure talking to the card processor."""

    kind = ErrorKind.PROCESSOR_ERROR


class UniqueConstraintViolation(Exception):
    """Raised by the repository when a unique index would be violated."""

    def __init__(self, index: str, key: tuple):
        super().__init__(f"Unique constraint {index} violated for {key}")
        self.index = index
        self.key = key
