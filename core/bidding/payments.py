"""
Payment Lifecycle - Guarded Status Transitions for Card Payments

Payment status changes arrive from the card processor (webhooks, confirmation
reads) and from operators (capture, cancel). Every change is a guarded
transition: it applies only when the current status is a valid predecessor.

Replaying a transition whose target is already the current status is a no-op,
so the same processor event can be delivered any number of times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Final, Optional

from core.bidding.errors import InvalidStateTransitionError
from core.bidding.schema import (
    OPEN_PAYMENT_STATUSES,
    RETRYABLE_PAYMENT_STATUSES,
    Bid,
    BidStatus,
    Payment,
    PaymentStatus,
    utcnow,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Transition Table
# =============================================================================

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: Final[dict[PaymentStatus, frozenset[PaymentStatus]]] = {
    PaymentStatus.REQUIRES_ACTION: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.AUTHORIZED: frozenset({PaymentStatus.PENDING, PaymentStatus.REQUIRES_ACTION}),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.AUTHORIZED}),
    PaymentStatus.CANCELLED: OPEN_PAYMENT_STATUSES,
    PaymentStatus.FAILED: OPEN_PAYMENT_STATUSES,
    PaymentStatus.EXPIRED: OPEN_PAYMENT_STATUSES,
}

# Processor webhook event type -> target status
EVENT_TARGETS: Final[dict[str, PaymentStatus]] = {
    "payment_intent.requires_action": PaymentStatus.REQUIRES_ACTION,
    "payment_intent.amount_capturable_updated": PaymentStatus.AUTHORIZED,
    "payment_intent.succeeded": PaymentStatus.CAPTURED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
}

# Processor intent status (as read back on confirmation) -> target status
INTENT_STATUS_TARGETS: Final[dict[str, PaymentStatus]] = {
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.CAPTURED,
    "canceled": PaymentStatus.CANCELLED,
    "requires_payment_method": PaymentStatus.FAILED,
}


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class TransitionOutcome:
    """What a transition attempt did to a payment."""

    payment: Payment
    previous_status: PaymentStatus
    applied: bool


@dataclass(frozen=True)
class ProcessorEvent:
    """A status notification from the card processor."""

    event_id: str
    event_type: str
    intent_id: str
    failure_message: Optional[str] = None

    @property
    def target_status(self) -> Optional[PaymentStatus]:
        return EVENT_TARGETS.get(self.event_type)


# =============================================================================
# Transitions
# =============================================================================


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, frozenset())


def transition_payment(
    payment: Payment,
    target: PaymentStatus,
    now: Optional[datetime] = None,
    failure_reason: Optional[str] = None,
    admin_notes: Optional[str] = None,
) -> TransitionOutcome:
    """
    Move a payment to `target` if its current status allows it.

    Returns an outcome with applied=False when the payment is already in the
    target status (replay).

    Raises:
        InvalidStateTransitionError: If target is unreachable from the
            current status
    """
    previous = payment.status
    if previous == target:
        return TransitionOutcome(payment=payment, previous_status=previous, applied=False)

    if not can_transition(previous, target):
        raise InvalidStateTransitionError(
            f"Cannot move payment {payment.payment_id} from {previous.value} to {target.value}"
        )

    now = now or utcnow()
    payment.status = target
    if target == PaymentStatus.AUTHORIZED:
        payment.authorized_at = now
    elif target == PaymentStatus.CAPTURED:
        payment.captured_at = now
    elif target == PaymentStatus.CANCELLED:
        payment.cancelled_at = now
        if failure_reason:
            payment.failure_reason = failure_reason
    elif target == PaymentStatus.FAILED:
        payment.failed_at = now
        payment.failure_reason = failure_reason or "Payment failed"
    elif target == PaymentStatus.EXPIRED:
        payment.expired_at = now
        payment.failure_reason = failure_reason or "Authorization expired"
    if admin_notes:
        payment.admin_notes = admin_notes
    payment.updated_at = now

    logger.info(
        "Payment %s moved %s -> %s", payment.payment_id, previous.value, target.value
    )
    return TransitionOutcome(payment=payment, previous_status=previous, applied=True)


def apply_processor_status(
    payment: Payment,
    target: PaymentStatus,
    now: Optional[datetime] = None,
    failure_reason: Optional[str] = None,
) -> TransitionOutcome:
    """
    Apply a processor-reported status.

    Declines and stale or out-of-order notifications are recorded facts, not
    errors: an unreachable target leaves the payment unchanged.
    """
    try:
        return transition_payment(payment, target, now=now, failure_reason=failure_reason)
    except InvalidStateTransitionError:
        logger.warning(
            "Ignoring processor status %s for payment %s in status %s",
            target.value,
            payment.payment_id,
            payment.status.value,
        )
        return TransitionOutcome(payment=payment, previous_status=payment.status, applied=False)


# =============================================================================
# Checkout and Expiry
# =============================================================================


def check_checkout_allowed(bid: Bid, current: Optional[Payment]) -> Optional[Payment]:
    """
    Decide what "create intent for bid" should do.

    Returns the current payment when it can be reused (PENDING or
    REQUIRES_ACTION), or None when a fresh payment must be created (no
    payment yet, or the last attempt was CANCELLED/FAILED/EXPIRED).

    Raises:
        InvalidStateTransitionError: If the bid is not ACCEPTED, or the
            current payment is already AUTHORIZED or CAPTURED
    """
    if bid.status != BidStatus.ACCEPTED:
        raise InvalidStateTransitionError("Only accepted bids can be paid")
    if current is None or current.status in RETRYABLE_PAYMENT_STATUSES:
        return None
    if current.status in (PaymentStatus.PENDING, PaymentStatus.REQUIRES_ACTION):
        return current
    raise InvalidStateTransitionError(f"Payment already {current.status.value.lower()}")


def new_payment_for_bid(
    bid: Bid,
    currency: str,
    auth_expiry_days: int,
    now: Optional[datetime] = None,
) -> Payment:
    """Create a PENDING payment for the bid's full total amount."""
    now = now or utcnow()
    return Payment(
        bid_id=bid.bid_id,
        student_id=bid.student_id,
        amount=Decimal(bid.total_amount),
        currency=currency,
        expires_at=now + timedelta(days=auth_expiry_days),
        created_at=now,
    )


def is_overdue(payment: Payment, now: datetime) -> bool:
    """An open payment past its authorization expiry."""
    return (
        payment.status in OPEN_PAYMENT_STATUSES
        and payment.expires_at is not None
        and now >= payment.expires_at
    )
