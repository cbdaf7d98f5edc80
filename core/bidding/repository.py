"""
Bidding Repository - In-Memory Storage for Places, Bids and Payments

In-memory implementation with optional JSON file persistence.

The repository is the transaction boundary: `transaction()` holds a single
re-entrant lock, and the unique index on (student, place) for non-REJECTED
bids is enforced here, not by callers, so a check-then-insert race between
two submissions can never let both through. A second index allows at most
one open (PENDING, REQUIRES_ACTION or AUTHORIZED) payment per bid.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from core.bidding.errors import UniqueConstraintViolation
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
    StudentProfile,
    utcnow,
)


logger = logging.getLogger(__name__)

ACTIVE_BID_INDEX = "uq_active_bid_student_place"
OPEN_PAYMENT_INDEX = "uq_open_payment_bid"

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100


# =============================================================================
# Pagination
# =============================================================================


@dataclass(frozen=True)
class Page:
    """One page of a list query."""

    items: list
    total: int
    page: int
    limit: int

    def to_dict(self, serialise: Callable[[Any], dict]) -> dict:
        return {
            "items": [serialise(item) for item in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
        }


def paginate(items: list, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> Page:
    """Slice a list into a page. Page is 1-based; limit is clamped to 1..100."""
    page = max(1, int(page))
    limit = max(1, min(MAX_PAGE_LIMIT, int(limit)))
    start = (page - 1) * limit
    return Page(items=items[start:start + limit], total=len(items), page=page, limit=limit)


# =============================================================================
# Repository
# =============================================================================


class BiddingRepository:
    """
    Repository for places, bids, payments and student profiles.

    Returned objects are the stored instances; callers mutate them only inside
    `transaction()` and then call the matching save method.
    """

    def __init__(self, persist_path: Optional[str] = None):
        """
        Initialise repository.

        Args:
            persist_path: Optional path to persist data to JSON file
        """
        self._lock = threading.RLock()
        self._places: dict[str, Place] = {}
        self._bids: dict[str, Bid] = {}
        self._payments: dict[str, Payment] = {}
        self._students: dict[str, StudentProfile] = {}
        self._processed_events: set[str] = set()

        # (student_id, place_id) -> bid_id for non-REJECTED bids
        self._active_bid_index: dict[tuple[str, str], str] = {}
        # intent_id -> payment_id
        self._intent_index: dict[str, str] = {}
        # bid_id -> payment_id for open payments
        self._open_payment_index: dict[str, str] = {}

        self._persist_path = Path(persist_path) if persist_path else None
        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _save_to_file(self) -> None:
        """Persist data to file."""
        if not self._persist_path:
            return

        data = {
            "places": {pid: p.to_dict() for pid, p in self._places.items()},
            "bids": {bid_id: b.to_dict() for bid_id, b in self._bids.items()},
            "payments": {
                pay_id: p.to_dict(include_secret=True) for pay_id, p in self._payments.items()
            },
            "students": {sid: s.to_dict() for sid, s in self._students.items()},
            "processed_events": sorted(self._processed_events),
            "saved_at": utcnow().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        """Load data from file."""
        try:
            data = json.loads(self._persist_path.read_text())
            for pid, place_data in data.get("places", {}).items():
                self._places[pid] = Place.from_dict(place_data)
            for bid_id, bid_data in data.get("bids", {}).items():
                bid = Bid.from_dict(bid_data)
                self._bids[bid_id] = bid
                if bid.is_active:
                    self._active_bid_index[(bid.student_id, bid.place_id)] = bid_id
            for pay_id, payment_data in data.get("payments", {}).items():
                payment = Payment.from_dict(payment_data)
                self._payments[pay_id] = payment
                if payment.intent_id:
                    self._intent_index[payment.intent_id] = pay_id
                if payment.status in OPEN_PAYMENT_STATUSES:
                    self._open_payment_index[payment.bid_id] = pay_id
            for sid, student_data in data.get("students", {}).items():
                self._students[sid] = StudentProfile.from_dict(student_data)
            self._processed_events = set(data.get("processed_events", []))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            # Start fresh rather than refuse to boot
            logger.warning("Could not load repository data from %s: %s", self._persist_path, e)

    @contextmanager
    def transaction(self) -> Iterator["BiddingRepository"]:
        """Hold the repository lock for a read-check-write sequence."""
        with self._lock:
            yield self

    # =========================================================================
    # Places
    # =========================================================================

    def add_place(self, place: Place) -> Place:
        with self._lock:
            if place.place_id in self._places:
                raise ValueError(f"Place {place.place_id} already exists")
            self._places[place.place_id] = place
            self._save_to_file()
            return place

    def save_place(self, place: Place) -> Place:
        with self._lock:
            self._places[place.place_id] = place
            self._save_to_file()
            return place

    def get_place(self, place_id: str) -> Optional[Place]:
        return self._places.get(place_id)

    def list_places(
        self,
        status: Optional[PlaceStatus] = None,
        owner_id: Optional[str] = None,
        city: Optional[str] = None,
        accommodation_type: Optional[AccommodationType] = None,
        max_price: Optional[Decimal] = None,
    ) -> list[Place]:
        """List places matching every filter given, newest first."""
        with self._lock:
            places = list(self._places.values())
        if status is not None:
            places = [p for p in places if p.status == status]
        if owner_id is not None:
            places = [p for p in places if p.owner_id == owner_id]
        if city:
            city_lower = city.strip().lower()
            places = [p for p in places if p.city.lower() == city_lower]
        if accommodation_type is not None:
            places = [p for p in places if p.accommodation_type == accommodation_type]
        if max_price is not None:
            places = [p for p in places if p.retail_price <= max_price]
        return sorted(places, key=lambda p: p.created_at, reverse=True)

    # =========================================================================
    # Bids
    # =========================================================================

    def _claim_active_slot(self, bid: Bid) -> None:
        key = (bid.student_id, bid.place_id)
        holder = self._active_bid_index.get(key)
        if bid.is_active:
            if holder is not None and holder != bid.bid_id:
                raise UniqueConstraintViolation(ACTIVE_BID_INDEX, key)
            self._active_bid_index[key] = bid.bid_id
        elif holder == bid.bid_id:
            del self._active_bid_index[key]

    def insert_bid(self, bid: Bid) -> Bid:
        """
        Insert a new bid.

        Raises:
            UniqueConstraintViolation: If the student already holds a
                non-REJECTED bid on the place
            ValueError: If the bid id already exists
        """
        with self._lock:
            if bid.bid_id in self._bids:
                raise ValueError(f"Bid {bid.bid_id} already exists")
            self._claim_active_slot(bid)
            self._bids[bid.bid_id] = bid
            self._save_to_file()
            return bid

    def save_bid(self, bid: Bid) -> Bid:
        with self._lock:
            self._claim_active_slot(bid)
            self._bids[bid.bid_id] = bid
            self._save_to_file()
            return bid

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        return self._bids.get(bid_id)

    def has_active_bid(self, student_id: str, place_id: str) -> bool:
        return (student_id, place_id) in self._active_bid_index

    def list_bids(
        self,
        status: Optional[BidStatus] = None,
        place_id: Optional[str] = None,
        student_id: Optional[str] = None,
        place_ids: Optional[set[str]] = None,
    ) -> list[Bid]:
        """List bids matching every filter given, newest first."""
        with self._lock:
            bids = list(self._bids.values())
        if status is not None:
            bids = [b for b in bids if b.status == status]
        if place_id is not None:
            bids = [b for b in bids if b.place_id == place_id]
        if student_id is not None:
            bids = [b for b in bids if b.student_id == student_id]
        if place_ids is not None:
            bids = [b for b in bids if b.place_id in place_ids]
        return sorted(bids, key=lambda b: b.created_at, reverse=True)

    def count_bids_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for bid in list(self._bids.values()):
            counts[bid.status.value] = counts.get(bid.status.value, 0) + 1
        return counts

    # =========================================================================
    # Payments
    # =========================================================================

    def _claim_open_payment_slot(self, payment: Payment) -> None:
        holder = self._open_payment_index.get(payment.bid_id)
        if payment.status in OPEN_PAYMENT_STATUSES:
            if holder is not None and holder != payment.payment_id:
                raise UniqueConstraintViolation(OPEN_PAYMENT_INDEX, (payment.bid_id,))
            self._open_payment_index[payment.bid_id] = payment.payment_id
        elif holder == payment.payment_id:
            del self._open_payment_index[payment.bid_id]

    def add_payment(self, payment: Payment) -> Payment:
        """
        Insert a new payment.

        Raises:
            UniqueConstraintViolation: If the bid already has an open payment
            ValueError: If the payment id already exists
        """
        with self._lock:
            if payment.payment_id in self._payments:
                raise ValueError(f"Payment {payment.payment_id} already exists")
            self._claim_open_payment_slot(payment)
            self._payments[payment.payment_id] = payment
            if payment.intent_id:
                self._intent_index[payment.intent_id] = payment.payment_id
            self._save_to_file()
            return payment

    def save_payment(self, payment: Payment) -> Payment:
        with self._lock:
            self._claim_open_payment_slot(payment)
            self._payments[payment.payment_id] = payment
            if payment.intent_id:
                self._intent_index[payment.intent_id] = payment.payment_id
            self._save_to_file()
            return payment

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self._payments.get(payment_id)

    def get_payment_by_intent(self, intent_id: str) -> Optional[Payment]:
        payment_id = self._intent_index.get(intent_id)
        return self._payments.get(payment_id) if payment_id else None

    def current_payment_for_bid(self, bid_id: str) -> Optional[Payment]:
        """Latest payment attempt for a bid."""
        with self._lock:
            attempts = [p for p in self._payments.values() if p.bid_id == bid_id]
        if not attempts:
            return None
        # stable sort: equal timestamps resolve to the later insert
        return sorted(attempts, key=lambda p: p.created_at)[-1]

    def list_payments(
        self,
        status: Optional[PaymentStatus] = None,
        statuses: Optional[set[PaymentStatus]] = None,
    ) -> list[Payment]:
        with self._lock:
            payments = list(self._payments.values())
        if status is not None:
            payments = [p for p in payments if p.status == status]
        if statuses is not None:
            payments = [p for p in payments if p.status in statuses]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    def mark_event_processed(self, event_id: str) -> bool:
        """
        Record a processor event id.

        Returns:
            False if the event was already processed
        """
        with self._lock:
            if event_id in self._processed_events:
                return False
            self._processed_events.add(event_id)
            self._save_to_file()
            return True

    # =========================================================================
    # Students
    # =========================================================================

    def save_student(self, student: StudentProfile) -> StudentProfile:
        with self._lock:
            self._students[student.student_id] = student
            self._save_to_file()
            return student

    def get_student(self, student_id: str) -> Optional[StudentProfile]:
        return self._students.get(student_id)

    def list_students(self, status: Optional[ApprovalStatus] = None) -> list[StudentProfile]:
        with self._lock:
            students = list(self._students.values())
        if status is not None:
            students = [s for s in students if s.approval_status == status]
        return sorted(students, key=lambda s: s.created_at, reverse=True)

    def count_students_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ApprovalStatus}
        for student in list(self._students.values()):
            counts[student.approval_status.value] += 1
        return counts


# =============================================================================
# Singleton Instance
# =============================================================================

_repository_instance: Optional[BiddingRepository] = None


def get_bidding_repository(persist_path: Optional[str] = None) -> BiddingRepository:
    """
    Get the bidding repository singleton.

    Args:
        persist_path: Optional path for persistence (only used on first call)

    Returns:
        BiddingRepository instance
    """
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = BiddingRepository(persist_path or "data/bidding.json")
    return _repository_instance


def reset_bidding_repository() -> None:
    """Reset the singleton instance (for testing)."""
    global _repository_instance
    _repository_instance = None
