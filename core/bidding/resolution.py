"""
Bid Resolution Engine - Accept, Reject or Queue at Submission Time

Each bid is judged on its own against the place's minimum nightly rate.
There is no competition between bids.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Final, Optional

from core.bidding.errors import InvalidStateTransitionError
from core.bidding.intake import IntakeAccepted
from core.bidding.money import round2
from core.bidding.schema import Bid, BidStatus, utcnow
from core.bidding.settlement import apply_settlement


logger = logging.getLogger(__name__)

AUTO_RESOLVER = "system:auto"


# Student-facing message for each outcome
RESOLUTION_MESSAGES: Final[dict[BidStatus, str]] = {
    BidStatus.ACCEPTED: "Congratulations! Your bid has been automatically accepted.",
    BidStatus.PENDING: "Your bid has been submitted and is pending review.",
    BidStatus.REJECTED: "Your bid is below the minimum acceptable rate for this place.",
}


def below_minimum_reason(minimum_bid: Decimal) -> str:
    return f"Bid below minimum acceptable rate of {minimum_bid}/night"


def resolve_new_bid(
    intake: IntakeAccepted,
    student_id: str,
    commission_rate: Decimal,
    now: Optional[datetime] = None,
) -> Bid:
    """
    Build a bid from validated intake and assign its initial status.

    - below minimum: REJECTED with a reason naming the minimum
    - at or above minimum with auto-accept: ACCEPTED and settled
    - otherwise: PENDING for an operator decision

    Total amount is bid_per_night * nights rounded once, half-up to cents.
    """
    place = intake.place
    now = now or utcnow()
    bid = Bid(
        place_id=place.place_id,
        student_id=student_id,
        check_in_date=intake.check_in_date,
        check_out_date=intake.check_out_date,
        bid_per_night=intake.bid_per_night,
        total_nights=intake.total_nights,
        total_amount=round2(intake.bid_per_night * intake.total_nights),
        created_at=now,
    )

    if intake.bid_per_night < place.minimum_bid:
        bid.status = BidStatus.REJECTED
        bid.rejection_reason = below_minimum_reason(place.minimum_bid)
        bid.resolved_by = AUTO_RESOLVER
        bid.resolved_at = now
    elif place.auto_accept_above_minimum:
        bid.status = BidStatus.ACCEPTED
        bid.resolved_by = AUTO_RESOLVER
        bid.resolved_at = now
        apply_settlement(bid, commission_rate)

    return bid


def resolve_pending_bid(
    bid: Bid,
    decision: BidStatus,
    commission_rate: Decimal,
    resolved_by: str,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Bid:
    """
    Apply an operator's decision to a PENDING bid.

    Args:
        bid: Bid to resolve
        decision: ACCEPTED or REJECTED
        commission_rate: Rate applied if accepted
        resolved_by: Operator identity for the audit fields
        rejection_reason: Optional reason, kept only on rejection
        now: Resolution timestamp

    Raises:
        InvalidStateTransitionError: If the bid is no longer PENDING or the
            decision is not ACCEPTED/REJECTED
    """
    if decision not in (BidStatus.ACCEPTED, BidStatus.REJECTED):
        raise InvalidStateTransitionError(
            f"A pending bid can only be accepted or rejected, not {decision.value}"
        )
    if bid.status != BidStatus.PENDING:
        raise InvalidStateTransitionError(
            f"Bid {bid.bid_id} is already {bid.status.value} and cannot be changed"
        )

    now = now or utcnow()
    bid.status = decision
    bid.resolved_by = resolved_by
    bid.resolved_at = now
    if decision == BidStatus.REJECTED:
        reason = (rejection_reason or "").strip()
        bid.rejection_reason = reason or "Rejected by operator"
    else:
        apply_settlement(bid, commission_rate)
    bid.updated_at = now

    logger.info("Bid %s resolved to %s by %s", bid.bid_id, decision.value, resolved_by)
    return bid
