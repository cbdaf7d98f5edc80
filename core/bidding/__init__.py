"""
Bid Lifecycle & Settlement Engine

Students bid a nightly rate on a place; bids are validated, resolved against
the place's minimum, settled into commission and host payable, paid by card
(authorise then capture) and finally paid out to the host out of band.
"""

from core.bidding.errors import (
    BiddingError,
    BidRejectedError,
    DuplicateBidError,
    ErrorKind,
    ForbiddenError,
    InvalidPayoutError,
    InvalidPlaceError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentNotCapturedError,
    ProcessorError,
    UniqueConstraintViolation,
)
from core.bidding.schema import (
    AccommodationType,
    ApprovalStatus,
    Bid,
    BidStatus,
    Payment,
    PaymentStatus,
    Place,
    PlaceStatus,
    Principal,
    Role,
    StudentProfile,
)
from core.bidding.intake import (
    IntakeAccepted,
    IntakeRejected,
    validate_bid_intake,
)
from core.bidding.resolution import resolve_new_bid, resolve_pending_bid
from core.bidding.settlement import (
    HostPayoutSummary,
    SettlementSplit,
    apply_settlement,
    compute_settlement,
    effective_commission_rate,
    record_payout,
)
from core.bidding.payments import (
    ProcessorEvent,
    TransitionOutcome,
    transition_payment,
)
from core.bidding.places import create_place, update_place, validate_place_data
from core.bidding.repository import (
    BiddingRepository,
    Page,
    get_bidding_repository,
    paginate,
    reset_bidding_repository,
)
from core.bidding.service import BiddingService

__all__ = [
    # Errors
    "BiddingError",
    "BidRejectedError",
    "DuplicateBidError",
    "ErrorKind",
    "ForbiddenError",
    "InvalidPayoutError",
    "InvalidPlaceError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "PaymentNotCapturedError",
    "ProcessorError",
    "UniqueConstraintViolation",
    # Schema
    "AccommodationType",
    "ApprovalStatus",
    "Bid",
    "BidStatus",
    "Payment",
    "PaymentStatus",
    "Place",
    "PlaceStatus",
    "Principal",
    "Role",
    "StudentProfile",
    # Rules
    "IntakeAccepted",
    "IntakeRejected",
    "validate_bid_intake",
    "resolve_new_bid",
    "resolve_pending_bid",
    "HostPayoutSummary",
    "SettlementSplit",
    "apply_settlement",
    "compute_settlement",
    "effective_commission_rate",
    "record_payout",
    "ProcessorEvent",
    "TransitionOutcome",
    "transition_payment",
    "create_place",
    "update_place",
    "validate_place_data",
    # Storage and orchestration
    "BiddingRepository",
    "Page",
    "get_bidding_repository",
    "paginate",
    "reset_bidding_repository",
    "BiddingService",
]
