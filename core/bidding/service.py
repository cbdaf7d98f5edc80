"""
Bidding Service - Orchestrates Intake, Resolution, Settlement and Payments

The only layer that touches the repository and the card processor. Pure rules
live in intake, resolution, settlement and payments; this module reads state,
applies a rule and writes the result back inside one repository transaction.

Configuration (commission rate, booking window, payout methods) is passed in
at construction and never read from globals.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Optional

from core.bidding import places as place_rules
from core.bidding import students as student_rules
from core.bidding.errors import (
    BidRejectedError,
    DuplicateBidError,
    ErrorKind,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ProcessorError,
    UniqueConstraintViolation,
)
from core.bidding.intake import IntakeRejected, validate_bid_intake
from core.bidding.money import to_cents
from core.bidding.payments import (
    INTENT_STATUS_TARGETS,
    ProcessorEvent,
    TransitionOutcome,
    apply_processor_status,
    check_checkout_allowed,
    is_overdue,
    new_payment_for_bid,
    transition_payment,
)
from core.bidding.repository import BiddingRepository
from core.bidding.resolution import resolve_new_bid, resolve_pending_bid
from core.bidding.schema import (
    OPEN_PAYMENT_STATUSES,
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
    utcnow,
)
from core.bidding.settlement import (
    HostPayoutSummary,
    effective_commission_rate,
    record_payout,
    summarise_host_payouts,
)
from processor.base import CardProcessor
from utils.config import Config


logger = logging.getLogger(__name__)


class BiddingService:
    """
    Application service for the bid lifecycle.

    Args:
        repository: Storage and transaction boundary
        config: Loaded configuration
        processor: Card processor collaborator
        clock: Returns the current UTC datetime (injectable for tests)
    """

    def __init__(
        self,
        repository: BiddingRepository,
        config: Config,
        processor: CardProcessor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.config = config
        self.processor = processor
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    # =========================================================================
    # Places
    # =========================================================================

    def _require_place(self, place_id: str) -> Place:
        place = self.repository.get_place(place_id)
        if place is None:
            raise NotFoundError(f"Place {place_id} not found")
        return place

    @staticmethod
    def _check_place_owner(principal: Principal, place: Place) -> None:
        if principal.is_admin:
            return
        if principal.role != Role.HOTEL_OWNER or place.owner_id != principal.principal_id:
            raise ForbiddenError("You can only manage your own places")

    def _has_settled_bids(self, place_id: str) -> bool:
        return bool(self.repository.list_bids(status=BidStatus.ACCEPTED, place_id=place_id))

    def create_place(self, principal: Principal, data: dict[str, Any]) -> Place:
        """
        Create a place. Hosts always own what they create; admins may name an
        owner with `owner_id`.
        """
        if principal.role not in (Role.ADMIN, Role.HOTEL_OWNER):
            raise ForbiddenError("Only hosts and admins can create places")
        owner_id = principal.principal_id
        if principal.is_admin and data.get("owner_id"):
            owner_id = str(data["owner_id"])

        place = place_rules.create_place(data, owner_id=owner_id)
        self.repository.add_place(place)
        logger.info("Place %s created by %s", place.place_id, principal.principal_id)
        return place

    def update_place(self, principal: Principal, place_id: str, changes: dict[str, Any]) -> Place:
        """
        Update a place. Once a place has accepted bids only its availability
        fields (blackouts, allowed days, status, inventory) may change.
        """
        with self.repository.transaction():
            place = self._require_place(place_id)
            self._check_place_owner(principal, place)
            updated = place_rules.update_place(
                place, changes, locked=self._has_settled_bids(place_id)
            )
            self.repository.save_place(updated)
        logger.info("Place %s updated by %s", place_id, principal.principal_id)
        return updated

    def set_place_status(self, principal: Principal, place_id: str, status: PlaceStatus) -> Place:
        return self.update_place(principal, place_id, {"status": status})

    def get_place(self, place_id: str, principal: Optional[Principal] = None) -> Place:
        """
        Fetch a place. Non-LIVE places are only visible to their owner and
        admins.
        """
        place = self._require_place(place_id)
        if place.is_live:
            return place
        if principal is not None and (
            principal.is_admin or place.owner_id == principal.principal_id
        ):
            return place
        raise NotFoundError(f"Place {place_id} not found")

    def list_places(
        self,
        principal: Optional[Principal] = None,
        city: Optional[str] = None,
        accommodation_type: Optional[AccommodationType] = None,
        max_price=None,
        status: Optional[PlaceStatus] = None,
    ) -> list[Place]:
        """
        List places. The public (and students) see LIVE places only; hosts see
        their own places in any status; admins see everything.
        """
        owner_id = None
        if principal is not None and principal.is_admin:
            pass
        elif principal is not None and principal.role == Role.HOTEL_OWNER:
            owner_id = principal.principal_id
        else:
            status = PlaceStatus.LIVE
        return self.repository.list_places(
            status=status,
            owner_id=owner_id,
            city=city,
            accommodation_type=accommodation_type,
            max_price=max_price,
        )

    # =========================================================================
    # Bids
    # =========================================================================

    def _require_bid(self, bid_id: str) -> Bid:
        bid = self.repository.get_bid(bid_id)
        if bid is None:
            raise NotFoundError(f"Bid {bid_id} not found")
        return bid

    def submit_bid(
        self,
        principal: Principal,
        place_id: str,
        check_in_date: Any,
        check_out_date: Any,
        bid_per_night: Any,
    ) -> Bid:
        """
        Validate, resolve and store a student's bid.

        The student is always the authenticated principal. Validation, the
        duplicate check and the insert happen in one transaction; the unique
        index catches anything the duplicate check could not see.

        Raises:
            BidRejectedError: With the kind of the first failing intake check
            DuplicateBidError: If the student already holds an active bid here
        """
        student_id = principal.principal_id
        now = self.now()

        with self.repository.transaction():
            place = self.repository.get_place(place_id)
            result = validate_bid_intake(
                place,
                check_in_date,
                check_out_date,
                bid_per_night,
                today=now.date(),
                has_active_bid=self.repository.has_active_bid(student_id, place_id),
                window_days=self.config.bid_window_days,
            )
            if isinstance(result, IntakeRejected):
                if result.kind == ErrorKind.DUPLICATE_BID:
                    raise DuplicateBidError(result.reason)
                raise BidRejectedError(result.reason, kind=result.kind)

            bid = resolve_new_bid(result, student_id, self.config.commission_rate, now=now)
            try:
                self.repository.insert_bid(bid)
            except UniqueConstraintViolation:
                logger.warning(
                    "Concurrent duplicate bid by %s on place %s", student_id, place_id
                )
                raise DuplicateBidError("You already have an active bid for this place") from None

        logger.info(
            "Bid %s created on place %s with status %s",
            bid.bid_id,
            place_id,
            bid.status.value,
        )
        return bid

    def resolve_bid(
        self,
        principal: Principal,
        bid_id: str,
        decision: BidStatus,
        rejection_reason: Optional[str] = None,
    ) -> Bid:
        """Accept or reject a PENDING bid on an operator's decision."""
        with self.repository.transaction():
            bid = self._require_bid(bid_id)
            resolve_pending_bid(
                bid,
                decision,
                self.config.commission_rate,
                resolved_by=principal.principal_id,
                rejection_reason=rejection_reason,
                now=self.now(),
            )
            self.repository.save_bid(bid)
        return bid

    def record_payout(self, bid_id: str, **changes) -> Bid:
        """
        Record payout bookkeeping on an accepted bid.

        Accepts payout_method, is_paid_to_host and payout_notes keyword
        arguments; omitted ones are left unchanged.

        Raises:
            PaymentNotCapturedError: If the bid's current payment is not CAPTURED
        """
        with self.repository.transaction():
            bid = self._require_bid(bid_id)
            payment = self.repository.current_payment_for_bid(bid_id)
            record_payout(
                bid,
                payment,
                self.config.payout_methods,
                now=self.now(),
                **changes,
            )
            self.repository.save_bid(bid)
        return bid

    def get_bid_for(self, principal: Principal, bid_id: str) -> Bid:
        """
        Fetch a bid the principal may see: their own (student), one on their
        place (host), or any (admin).
        """
        bid = self._require_bid(bid_id)
        if principal.is_admin:
            return bid
        if principal.role == Role.STUDENT and bid.student_id == principal.principal_id:
            return bid
        if principal.role == Role.HOTEL_OWNER:
            place = self.repository.get_place(bid.place_id)
            if place is not None and place.owner_id == principal.principal_id:
                return bid
        raise ForbiddenError("You do not have access to this bid")

    def bid_detail(self, bid: Bid, include_settlement: bool = True) -> dict:
        """Bid joined with place, student and current payment for display."""
        data = bid.to_dict()
        place = self.repository.get_place(bid.place_id)
        student = self.repository.get_student(bid.student_id)
        payment = self.repository.current_payment_for_bid(bid.bid_id)
        data["place"] = place.to_summary_dict() if place else None
        data["student"] = student.to_summary_dict() if student else None
        data["payment"] = payment.to_dict() if payment else None
        if include_settlement:
            data["effective_commission_rate"] = str(
                effective_commission_rate(bid, self.config.commission_rate)
            )
        else:
            for key in ("commission_rate", "platform_commission", "payable_to_host"):
                data.pop(key, None)
        return data

    def list_bids(
        self,
        status: Optional[BidStatus] = None,
        place_id: Optional[str] = None,
    ) -> list[Bid]:
        return self.repository.list_bids(status=status, place_id=place_id)

    def my_bids(self, principal: Principal, status: Optional[BidStatus] = None) -> list[Bid]:
        return self.repository.list_bids(status=status, student_id=principal.principal_id)

    def my_bid_for_place(self, principal: Principal, place_id: str) -> Optional[Bid]:
        """Latest bid of the principal for a place, or None."""
        bids = self.repository.list_bids(student_id=principal.principal_id, place_id=place_id)
        return bids[0] if bids else None

    def _owned_place_ids(self, principal: Principal) -> set[str]:
        return {
            place.place_id
            for place in self.repository.list_places(owner_id=principal.principal_id)
        }

    def host_bids(self, principal: Principal, status: Optional[BidStatus] = None) -> list[Bid]:
        """Bids on the places the host owns."""
        return self.repository.list_bids(
            status=status, place_ids=self._owned_place_ids(principal)
        )

    def host_summary(self, principal: Principal) -> HostPayoutSummary:
        return summarise_host_payouts(self.host_bids(principal, status=BidStatus.ACCEPTED))

    def bid_stats(self) -> dict[str, int]:
        return self.repository.count_bids_by_status()

    # =========================================================================
    # Payments
    # =========================================================================

    def _require_payment(self, payment_id: str) -> Payment:
        payment = self.repository.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def create_payment_intent(self, principal: Principal, bid_id: str) -> tuple[Payment, bool]:
        """
        Start (or resume) checkout for an accepted bid.

        The PENDING payment is inserted under the repository lock, where the
        open-payment index admits one per bid. The processor is called with
        the lock released and the intent is attached afterwards. A reused
        payment that has no intent yet is retried under the same idempotency
        key, so the processor hands back the intent it already made.

        Returns:
            (payment, created) where created is False when an open
            PENDING/REQUIRES_ACTION payment was reused

        Raises:
            ForbiddenError: If the bid is not the principal's
            InvalidStateTransitionError: If the bid is not ACCEPTED or its
                payment is already AUTHORIZED/CAPTURED
            ProcessorError: If the processor refuses or is unreachable; a
                payment created by this call is marked FAILED
        """
        with self.repository.transaction():
            bid = self._require_bid(bid_id)
            if bid.student_id != principal.principal_id:
                raise ForbiddenError("You can only pay for your own bids")

            current = self.repository.current_payment_for_bid(bid_id)
            reusable = check_checkout_allowed(bid, current)
            if reusable is not None and reusable.intent_id:
                return reusable, False

            created = reusable is None
            if created:
                payment = new_payment_for_bid(
                    bid, self.config.currency, self.config.auth_expiry_days, now=self.now()
                )
                try:
                    self.repository.add_payment(payment)
                except UniqueConstraintViolation:
                    raise InvalidStateTransitionError("Payment already in progress") from None
            else:
                payment = reusable
            place = self.repository.get_place(bid.place_id)

        place_name = place.name if place else bid.place_id
        try:
            handle = self.processor.create_intent(
                amount_cents=to_cents(payment.amount),
                currency=payment.currency,
                metadata={
                    "bid_id": bid.bid_id,
                    "student_id": bid.student_id,
                    "place_id": bid.place_id,
                    "check_in_date": bid.check_in_date.isoformat(),
                    "check_out_date": bid.check_out_date.isoformat(),
                    "payment_id": payment.payment_id,
                },
                description=f"Bid for {place_name} - {bid.total_nights} nights",
                idempotency_key=payment.payment_id,
            )
        except ProcessorError as e:
            if created:
                with self.repository.transaction():
                    outcome = transition_payment(
                        payment, PaymentStatus.FAILED, now=self.now(), failure_reason=e.reason
                    )
                    if outcome.applied:
                        self.repository.save_payment(payment)
            raise

        with self.repository.transaction():
            if not payment.intent_id:
                payment.intent_id = handle.intent_id
                payment.client_secret = handle.client_secret
                self.repository.save_payment(payment)

        logger.info(
            "Payment %s %s for bid %s (intent %s)",
            payment.payment_id,
            "created" if created else "resumed",
            bid_id,
            payment.intent_id,
        )
        return payment, created

    def payment_for_bid(self, principal: Principal, bid_id: str) -> Optional[Payment]:
        """Current payment for one of the principal's bids."""
        bid = self.get_bid_for(principal, bid_id)
        return self.repository.current_payment_for_bid(bid.bid_id)

    def get_payment(self, payment_id: str) -> Payment:
        return self._require_payment(payment_id)

    def list_payments(self, status: Optional[PaymentStatus] = None) -> list[Payment]:
        return self.repository.list_payments(status=status)

    def confirm_payment(self, principal: Principal, payment_id: str) -> TransitionOutcome:
        """
        Re-read an intent after the payer confirmed their card and apply the
        status the processor reports.
        """
        payment = self._require_payment(payment_id)
        if payment.student_id != principal.principal_id:
            raise ForbiddenError("You can only confirm your own payments")
        if not payment.intent_id:
            raise InvalidStateTransitionError("No payment intent found")

        handle = self.processor.retrieve_intent(payment.intent_id)
        target = INTENT_STATUS_TARGETS.get(handle.status)

        with self.repository.transaction():
            if target is None:
                return TransitionOutcome(
                    payment=payment, previous_status=payment.status, applied=False
                )
            failure = handle.failure_message
            if target == PaymentStatus.FAILED and not failure:
                failure = "Payment method required"
            outcome = apply_processor_status(payment, target, now=self.now(), failure_reason=failure)
            if outcome.applied:
                self.repository.save_payment(payment)
        return outcome

    def apply_processor_event(self, event: ProcessorEvent) -> Optional[TransitionOutcome]:
        """
        Apply a processor notification.

        Events are deduplicated by id once their payment is found. Unknown
        event types are ignored. An event for an intent not yet attached is
        ignored without being recorded, so a redelivery still applies.
        """
        target = event.target_status
        if target is None:
            logger.debug("Ignoring processor event type %s", event.event_type)
            return None

        with self.repository.transaction():
            payment = self.repository.get_payment_by_intent(event.intent_id)
            if payment is None:
                # Left unmarked so a redelivery can still apply
                logger.warning(
                    "Processor event %s for unknown intent %s", event.event_id, event.intent_id
                )
                return None
            if not self.repository.mark_event_processed(event.event_id):
                logger.info("Processor event %s already processed", event.event_id)
                return None
            outcome = apply_processor_status(
                payment, target, now=self.now(), failure_reason=event.failure_message
            )
            if outcome.applied:
                self.repository.save_payment(payment)
        return outcome

    def capture_payment(self, payment_id: str, admin_notes: Optional[str] = None) -> Payment:
        """
        Capture held funds. Only AUTHORIZED payments can be captured.

        Raises:
            InvalidStateTransitionError: If the payment is not AUTHORIZED
            ProcessorError: If the processor refuses or is unreachable
        """
        payment = self._require_payment(payment_id)
        if payment.status != PaymentStatus.AUTHORIZED:
            raise InvalidStateTransitionError(
                f"Cannot capture payment with status: {payment.status.value}. "
                "Only AUTHORIZED payments can be captured."
            )

        self.processor.capture_intent(payment.intent_id)

        with self.repository.transaction():
            transition_payment(
                payment, PaymentStatus.CAPTURED, now=self.now(), admin_notes=admin_notes
            )
            self.repository.save_payment(payment)
        return payment

    def cancel_payment(
        self,
        payment_id: str,
        reason: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> Payment:
        """
        Cancel an open payment and release any hold. The bid stays ACCEPTED,
        so the student can check out again.
        """
        payment = self._require_payment(payment_id)
        if payment.status not in OPEN_PAYMENT_STATUSES:
            raise InvalidStateTransitionError(
                f"Cannot cancel payment with status: {payment.status.value}. "
                "Only PENDING, REQUIRES_ACTION or AUTHORIZED payments can be cancelled."
            )

        if payment.intent_id:
            self.processor.cancel_intent(payment.intent_id, reason=reason)

        with self.repository.transaction():
            transition_payment(
                payment,
                PaymentStatus.CANCELLED,
                now=self.now(),
                failure_reason=(reason or "").strip() or "Payment cancelled by admin",
                admin_notes=admin_notes,
            )
            self.repository.save_payment(payment)
        return payment

    def expire_overdue_payments(self) -> list[Payment]:
        """Mark every open payment past its authorization expiry as EXPIRED."""
        now = self.now()
        expired = []
        with self.repository.transaction():
            for payment in self.repository.list_payments(statuses=set(OPEN_PAYMENT_STATUSES)):
                if not is_overdue(payment, now):
                    continue
                outcome = transition_payment(payment, PaymentStatus.EXPIRED, now=now)
                if outcome.applied:
                    self.repository.save_payment(payment)
                    expired.append(payment)
        if expired:
            logger.info("Expired %d overdue payments", len(expired))
        return expired

    # =========================================================================
    # Students
    # =========================================================================

    def _require_student(self, student_id: str) -> StudentProfile:
        student = self.repository.get_student(student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def register_student(
        self,
        principal: Principal,
        email: str,
        name: str = "",
        student_id_url: Optional[str] = None,
    ) -> StudentProfile:
        if principal.role != Role.STUDENT:
            raise ForbiddenError("Only students have a student profile")
        with self.repository.transaction():
            existing = self.repository.get_student(principal.principal_id)
            profile = student_rules.register_student(
                existing,
                principal.principal_id,
                email=email,
                name=name,
                student_id_url=student_id_url,
            )
            self.repository.save_student(profile)
        return profile

    def get_student(self, student_id: str) -> StudentProfile:
        return self._require_student(student_id)

    def list_students(self, status: Optional[ApprovalStatus] = None) -> list[StudentProfile]:
        return self.repository.list_students(status=status)

    def approve_student(self, student_id: str) -> StudentProfile:
        with self.repository.transaction():
            profile = student_rules.approve_student(self._require_student(student_id))
            self.repository.save_student(profile)
        return profile

    def reject_student(self, student_id: str, reason: Optional[str] = None) -> StudentProfile:
        with self.repository.transaction():
            profile = student_rules.reject_student(self._require_student(student_id), reason)
            self.repository.save_student(profile)
        return profile

    def student_stats(self) -> dict[str, int]:
        counts = self.repository.count_students_by_status()
        counts["total"] = sum(counts.values())
        return counts

    def student_approval(self, student_id: str) -> Optional[ApprovalStatus]:
        """Approval status on file for a student, or None if unregistered."""
        profile = self.repository.get_student(student_id)
        return profile.approval_status if profile else None
