"""
Tests for the Bidding Service

End-to-end lifecycle against the in-memory repository, the mock card
processor and a fixed clock.

Tests covering:
1. Submit, auto-accept, checkout, authorise, capture, payout
2. Duplicate bids (sequential and concurrent)
3. Payout refused until the payment is captured
4. Processor events: dedupe by id, replay, stale events
5. Cancel then retry, and authorization expiry
6. Place ownership and the settled-bid lock
7. Checkout with the store lock released during processor calls
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.bidding import (
    BiddingRepository,
    BiddingService,
    BidRejectedError,
    BidStatus,
    DuplicateBidError,
    ErrorKind,
    ForbiddenError,
    InvalidPlaceError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentNotCapturedError,
    PaymentStatus,
    PlaceStatus,
    Principal,
    ProcessorError,
    ProcessorEvent,
    Role,
)
from processor.mock import MockCardProcessor
from utils.config import Config


START = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


class FixedClock:
    """Clock the tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


HOST = Principal("host-1", Role.HOTEL_OWNER)
OTHER_HOST = Principal("host-2", Role.HOTEL_OWNER)
ADMIN = Principal("admin-1", Role.ADMIN)
STUDENT = Principal("student-1", Role.STUDENT)
OTHER_STUDENT = Principal("student-2", Role.STUDENT)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def processor():
    return MockCardProcessor()


@pytest.fixture
def service(clock, processor):
    config = Config(
        commission_rate=Decimal("0.0666"),
        bid_window_days=30,
        payout_methods=("bank_transfer", "manual", "other"),
        currency="usd",
        auth_expiry_days=6,
        session_secret="test-secret",
    )
    return BiddingService(BiddingRepository(), config, processor, clock=clock)


def place_data(**overrides) -> dict:
    data = {
        "name": "Pod Central",
        "city": "Lisbon",
        "retail_price": "100",
        "minimum_bid": "60",
        "auto_accept_above_minimum": True,
        "status": "LIVE",
    }
    data.update(overrides)
    return data


@pytest.fixture
def place(service):
    return service.create_place(HOST, place_data())


@pytest.fixture
def accepted_bid(service, place):
    return service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "70")


def authorise(service, processor, payment):
    processor.simulate_card(payment.intent_id, "requires_capture")
    return service.confirm_payment(STUDENT, payment.payment_id)


# =============================================================================
# Happy Path
# =============================================================================


class TestLifecycle:
    """Tests for the full bid-to-payout flow."""

    def test_auto_accepted_bid_is_settled(self, accepted_bid):
        assert accepted_bid.status == BidStatus.ACCEPTED
        assert accepted_bid.total_amount == Decimal("210.00")
        assert accepted_bid.platform_commission == Decimal("13.99")
        assert accepted_bid.payable_to_host == Decimal("196.01")
        assert accepted_bid.student_id == "student-1"

    def test_full_lifecycle(self, service, processor, accepted_bid, clock):
        payment, created = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        assert created is True
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("210.00")
        assert processor.metadata_for(payment.intent_id)["bid_id"] == accepted_bid.bid_id

        outcome = authorise(service, processor, payment)
        assert outcome.applied is True
        assert payment.status == PaymentStatus.AUTHORIZED

        with pytest.raises(PaymentNotCapturedError):
            service.record_payout(accepted_bid.bid_id, is_paid_to_host=True)

        clock.advance(days=4)
        service.capture_payment(payment.payment_id, admin_notes="Checked out")
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.captured_at == clock.now

        bid = service.record_payout(
            accepted_bid.bid_id, payout_method="bank_transfer", is_paid_to_host=True
        )
        assert bid.is_paid_to_host is True
        assert bid.paid_to_host_at == clock.now
        assert bid.payout_method == "bank_transfer"

    def test_create_intent_reuses_open_payment(self, service, accepted_bid):
        first, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        second, created = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        assert created is False
        assert second is first

    def test_checkout_refused_once_authorised(self, service, processor, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        authorise(service, processor, payment)
        with pytest.raises(InvalidStateTransitionError):
            service.create_payment_intent(STUDENT, accepted_bid.bid_id)

    def test_cannot_pay_for_another_students_bid(self, service, accepted_bid):
        with pytest.raises(ForbiddenError):
            service.create_payment_intent(OTHER_STUDENT, accepted_bid.bid_id)

    def test_declined_card_fails_payment(self, service, processor, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        processor.simulate_card(payment.intent_id, "requires_payment_method")
        service.confirm_payment(STUDENT, payment.payment_id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Payment method required"

    def test_unconfirmed_intent_is_left_alone(self, service, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        outcome = service.confirm_payment(STUDENT, payment.payment_id)
        assert outcome.applied is False
        assert payment.status == PaymentStatus.PENDING


# =============================================================================
# Checkout Concurrency
# =============================================================================


class GatedProcessor(MockCardProcessor):
    """Mock processor whose create_intent blocks until the test releases it."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def create_intent(self, *args, **kwargs):
        self.calls += 1
        self.entered.set()
        assert self.release.wait(timeout=5)
        return super().create_intent(*args, **kwargs)


class DecliningProcessor(MockCardProcessor):
    """Mock processor that refuses the first intent it is asked for."""

    def __init__(self):
        super().__init__()
        self.refused = False

    def create_intent(self, *args, **kwargs):
        if not self.refused:
            self.refused = True
            raise ProcessorError("Card processor error: amount too small")
        return super().create_intent(*args, **kwargs)


class TestCheckoutConcurrency:
    """Tests for checkout while the processor call is in flight."""

    @pytest.fixture
    def processor(self):
        return GatedProcessor()

    def test_store_is_usable_during_processor_call(self, service, processor, accepted_bid):
        """Other students can bid while a checkout waits on the processor."""
        results = []
        checkout = threading.Thread(
            target=lambda: results.append(
                service.create_payment_intent(STUDENT, accepted_bid.bid_id)
            )
        )
        checkout.start()
        assert processor.entered.wait(timeout=5)

        other_place = service.create_place(OTHER_HOST, place_data(name="Dock House"))
        bid = service.submit_bid(OTHER_STUDENT, other_place.place_id, "2026-03-03", "2026-03-05", "65")
        assert bid.status == BidStatus.ACCEPTED

        in_flight = service.repository.current_payment_for_bid(accepted_bid.bid_id)
        assert in_flight.status == PaymentStatus.PENDING
        assert in_flight.intent_id is None

        processor.release.set()
        checkout.join(timeout=5)
        payment, created = results[0]
        assert created is True
        assert payment is in_flight
        assert payment.intent_id is not None
        assert service.repository.get_payment_by_intent(payment.intent_id) is payment

    def test_concurrent_checkouts_share_one_payment(self, service, processor, accepted_bid):
        results = []

        def checkout():
            results.append(service.create_payment_intent(STUDENT, accepted_bid.bid_id))

        threads = [threading.Thread(target=checkout) for _ in range(2)]
        for t in threads:
            t.start()
        assert processor.entered.wait(timeout=5)
        processor.release.set()
        for t in threads:
            t.join(timeout=5)

        payments = {id(payment) for payment, _ in results}
        assert len(payments) == 1
        assert sorted(created for _, created in results) == [False, True]
        assert len(service.list_payments()) == 1
        assert results[0][0].intent_id == results[1][0].intent_id


class TestCheckoutFailures:
    """Tests for processor refusals during checkout."""

    @pytest.fixture
    def processor(self):
        return DecliningProcessor()

    def test_refused_intent_fails_payment_and_allows_retry(self, service, accepted_bid):
        with pytest.raises(ProcessorError):
            service.create_payment_intent(STUDENT, accepted_bid.bid_id)

        failed = service.repository.current_payment_for_bid(accepted_bid.bid_id)
        assert failed.status == PaymentStatus.FAILED
        assert "amount too small" in failed.failure_reason

        retry, created = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        assert created is True
        assert retry.payment_id != failed.payment_id
        assert retry.intent_id is not None


# =============================================================================
# Submission Rules
# =============================================================================


class TestSubmission:
    """Tests for bid submission through the service."""

    def test_duplicate_bid_is_refused(self, service, place, accepted_bid):
        with pytest.raises(DuplicateBidError) as exc_info:
            service.submit_bid(STUDENT, place.place_id, "2026-03-10", "2026-03-12", "80")
        assert exc_info.value.kind == ErrorKind.DUPLICATE_BID

    def test_below_minimum_is_stored_rejected_and_frees_slot(self, service, place):
        bid = service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "50")
        assert bid.status == BidStatus.REJECTED
        assert bid.rejection_reason == "Bid below minimum acceptable rate of 60/night"
        assert service.repository.get_bid(bid.bid_id) is bid

        retry = service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "65")
        assert retry.status == BidStatus.ACCEPTED

    def test_intake_failure_carries_kind(self, service):
        place = service.create_place(HOST, place_data(blackout_dates=["2026-03-04"]))
        with pytest.raises(BidRejectedError) as exc_info:
            service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "70")
        assert exc_info.value.kind == ErrorKind.DATE_BLOCKED
        assert service.repository.list_bids() == []

    def test_unknown_place_is_unavailable(self, service):
        with pytest.raises(BidRejectedError) as exc_info:
            service.submit_bid(STUDENT, "PLC-MISSING", "2026-03-03", "2026-03-06", "70")
        assert exc_info.value.kind == ErrorKind.PLACE_UNAVAILABLE

    def test_window_follows_the_clock(self, service, place, clock):
        clock.advance(days=10)
        with pytest.raises(BidRejectedError) as exc_info:
            service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "70")
        assert exc_info.value.kind == ErrorKind.DATE_OUT_OF_WINDOW

    def test_concurrent_submissions_create_one_bid(self, service, place):
        results = []
        barrier = threading.Barrier(8)

        def submit():
            barrier.wait()
            try:
                service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "70")
                results.append("ok")
            except DuplicateBidError:
                results.append("duplicate")

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert results.count("duplicate") == 7

    def test_operator_rejection_frees_slot(self, service):
        place = service.create_place(HOST, place_data(auto_accept_above_minimum=False))
        bid = service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "70")
        assert bid.status == BidStatus.PENDING

        service.resolve_bid(ADMIN, bid.bid_id, BidStatus.REJECTED)
        assert bid.rejection_reason == "Rejected by operator"
        again = service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "75")
        assert again.status == BidStatus.PENDING

    def test_operator_acceptance_uses_current_rate(self, service):
        place = service.create_place(HOST, place_data(auto_accept_above_minimum=False))
        bid = service.submit_bid(STUDENT, place.place_id, "2026-03-03", "2026-03-06", "70")
        service.config.commission_rate = Decimal("0.10")
        service.resolve_bid(ADMIN, bid.bid_id, BidStatus.ACCEPTED)
        assert bid.platform_commission == Decimal("21.00")
        assert bid.resolved_by == "admin-1"


# =============================================================================
# Processor Events
# =============================================================================


class TestProcessorEvents:
    """Tests for webhook-driven status changes."""

    @pytest.fixture
    def payment(self, service, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        return payment

    def test_event_authorises_payment(self, service, payment):
        event = ProcessorEvent("evt_1", "payment_intent.amount_capturable_updated", payment.intent_id)
        outcome = service.apply_processor_event(event)
        assert outcome.applied is True
        assert payment.status == PaymentStatus.AUTHORIZED

    def test_same_event_id_is_processed_once(self, service, payment):
        event = ProcessorEvent("evt_1", "payment_intent.amount_capturable_updated", payment.intent_id)
        service.apply_processor_event(event)
        assert service.apply_processor_event(event) is None

    def test_replayed_status_is_a_no_op(self, service, payment):
        service.apply_processor_event(
            ProcessorEvent("evt_1", "payment_intent.amount_capturable_updated", payment.intent_id)
        )
        authorized_at = payment.authorized_at
        outcome = service.apply_processor_event(
            ProcessorEvent("evt_2", "payment_intent.amount_capturable_updated", payment.intent_id)
        )
        assert outcome.applied is False
        assert payment.authorized_at == authorized_at

    def test_stale_event_after_capture_is_ignored(self, service, processor, payment):
        authorise(service, processor, payment)
        service.capture_payment(payment.payment_id)
        outcome = service.apply_processor_event(
            ProcessorEvent("evt_late", "payment_intent.amount_capturable_updated", payment.intent_id)
        )
        assert outcome.applied is False
        assert payment.status == PaymentStatus.CAPTURED

    def test_failure_event_keeps_processor_message(self, service, payment):
        service.apply_processor_event(
            ProcessorEvent(
                "evt_1", "payment_intent.payment_failed", payment.intent_id, "Card declined"
            )
        )
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Card declined"

    def test_event_for_unattached_intent_applies_on_redelivery(self, service, payment):
        """An event that arrives before its intent is known is not consumed."""
        event = ProcessorEvent("evt_early", "payment_intent.amount_capturable_updated", "pi_later")
        assert service.apply_processor_event(event) is None

        with service.repository.transaction():
            payment.intent_id = "pi_later"
            service.repository.save_payment(payment)

        outcome = service.apply_processor_event(event)
        assert outcome.applied is True
        assert payment.status == PaymentStatus.AUTHORIZED

    def test_unknown_event_type_and_intent_are_ignored(self, service, payment):
        assert service.apply_processor_event(
            ProcessorEvent("evt_1", "charge.refunded", payment.intent_id)
        ) is None
        assert service.apply_processor_event(
            ProcessorEvent("evt_2", "payment_intent.succeeded", "pi_unknown")
        ) is None
        assert payment.status == PaymentStatus.PENDING


# =============================================================================
# Operator Payment Actions
# =============================================================================


class TestOperatorActions:
    """Tests for capture, cancel and expiry."""

    def test_capture_requires_authorisation(self, service, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        with pytest.raises(InvalidStateTransitionError):
            service.capture_payment(payment.payment_id)

    def test_cancel_then_retry_creates_fresh_payment(self, service, processor, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        authorise(service, processor, payment)

        service.cancel_payment(payment.payment_id, admin_notes="Guest asked")
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.failure_reason == "Payment cancelled by admin"
        assert service.repository.get_bid(accepted_bid.bid_id).status == BidStatus.ACCEPTED

        retry, created = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        assert created is True
        assert retry.payment_id != payment.payment_id
        assert retry.intent_id != payment.intent_id

    def test_captured_payment_cannot_be_cancelled(self, service, processor, accepted_bid):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        authorise(service, processor, payment)
        service.capture_payment(payment.payment_id)
        with pytest.raises(InvalidStateTransitionError):
            service.cancel_payment(payment.payment_id)

    def test_overdue_authorisation_expires(self, service, processor, accepted_bid, clock):
        payment, _ = service.create_payment_intent(STUDENT, accepted_bid.bid_id)
        authorise(service, processor, payment)

        clock.advance(days=5)
        assert service.expire_overdue_payments() == []

        clock.advance(days=2)
        expired = service.expire_overdue_payments()
        assert [p.payment_id for p in expired] == [payment.payment_id]
        assert payment.status == PaymentStatus.EXPIRED
        with pytest.raises(PaymentNotCapturedError):
            service.record_payout(accepted_bid.bid_id, is_paid_to_host=True)

    def test_unknown_payment_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            service.capture_payment("PAY-MISSING")


# =============================================================================
# Places and Visibility
# =============================================================================


class TestPlaces:
    """Tests for place ownership and visibility."""

    def test_other_host_cannot_update(self, service, place):
        with pytest.raises(ForbiddenError):
            service.update_place(OTHER_HOST, place.place_id, {"name": "Mine now"})

    def test_admin_can_create_for_host(self, service):
        place = service.create_place(ADMIN, place_data(owner_id="host-9"))
        assert place.owner_id == "host-9"

    def test_host_cannot_assign_owner(self, service):
        place = service.create_place(HOST, place_data(owner_id="host-9"))
        assert place.owner_id == "host-1"

    def test_students_cannot_create_places(self, service):
        with pytest.raises(ForbiddenError):
            service.create_place(STUDENT, place_data())

    def test_settled_place_locks_prices(self, service, place, accepted_bid):
        with pytest.raises(InvalidPlaceError):
            service.update_place(HOST, place.place_id, {"minimum_bid": "65"})
        updated = service.update_place(HOST, place.place_id, {"blackout_dates": ["2026-03-20"]})
        assert len(updated.blackout_dates) == 1

    def test_drafts_are_hidden_from_public(self, service):
        draft = service.create_place(HOST, place_data(status="DRAFT"))
        with pytest.raises(NotFoundError):
            service.get_place(draft.place_id)
        assert service.get_place(draft.place_id, HOST) is draft
        assert service.list_places(None) == []
        assert service.list_places(HOST) == [draft]

    def test_set_status(self, service, place):
        paused = service.set_place_status(HOST, place.place_id, PlaceStatus.PAUSED)
        assert paused.status == PlaceStatus.PAUSED


# =============================================================================
# Views
# =============================================================================


class TestViews:
    """Tests for bid visibility and summaries."""

    def test_bid_visibility(self, service, accepted_bid):
        assert service.get_bid_for(STUDENT, accepted_bid.bid_id) is accepted_bid
        assert service.get_bid_for(HOST, accepted_bid.bid_id) is accepted_bid
        assert service.get_bid_for(ADMIN, accepted_bid.bid_id) is accepted_bid
        with pytest.raises(ForbiddenError):
            service.get_bid_for(OTHER_STUDENT, accepted_bid.bid_id)
        with pytest.raises(ForbiddenError):
            service.get_bid_for(OTHER_HOST, accepted_bid.bid_id)

    def test_student_detail_hides_settlement(self, service, accepted_bid):
        detail = service.bid_detail(accepted_bid, include_settlement=False)
        assert "platform_commission" not in detail
        assert detail["place"]["name"] == "Pod Central"

        full = service.bid_detail(accepted_bid)
        assert full["platform_commission"] == "13.99"
        assert full["effective_commission_rate"] == "6.66"

    def test_host_summary_and_stats(self, service, processor, accepted_bid):
        summary = service.host_summary(HOST)
        assert summary.accepted_bids == 1
        assert summary.payable_total == Decimal("196.01")
        assert service.host_summary(OTHER_HOST).accepted_bids == 0
        assert service.bid_stats() == {"ACCEPTED": 1}

    def test_student_registration_and_approval(self, service):
        service.register_student(STUDENT, email="ana@uni.example")
        assert service.student_approval("student-1").value == "PENDING"
        service.approve_student("student-1")
        assert service.student_approval("student-1").value == "APPROVED"
        assert service.student_approval("student-9") is None
        assert service.student_stats()["total"] == 1
