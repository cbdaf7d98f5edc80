"""
Bidding Schema - Places, Bids, Payments and Principals

Canonical records for the bid lifecycle. Money is Decimal throughout and is
serialised as strings so nothing is ever round-tripped through float.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Final, Optional

from core.bidding.money import money_str, parse_money


# =============================================================================
# Enums
# =============================================================================


class PlaceStatus(Enum):
    """Listing status of a place. Only LIVE places accept bids."""

    DRAFT = "DRAFT"
    LIVE = "LIVE"
    PAUSED = "PAUSED"


class AccommodationType(Enum):
    """Kind of accommodation unit."""

    POD_SHARE = "POD_SHARE"
    HOSTEL = "HOSTEL"
    SHARED_APARTMENT = "SHARED_APARTMENT"
    PRIVATE_ROOM = "PRIVATE_ROOM"


class BidStatus(Enum):
    """Resolution state of a bid. ACCEPTED and REJECTED are terminal."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class PaymentStatus(Enum):
    """State of a card authorisation/capture."""

    PENDING = "PENDING"
    REQUIRES_ACTION = "REQUIRES_ACTION"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Role(Enum):
    """Role of an authenticated principal."""

    STUDENT = "STUDENT"
    HOTEL_OWNER = "HOTEL_OWNER"
    ADMIN = "ADMIN"


class ApprovalStatus(Enum):
    """Identity approval state of a student."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# =============================================================================
# Constants
# =============================================================================

# Days of week are numbered Sunday = 0 through Saturday = 6
ALL_DAYS_OF_WEEK: Final[frozenset[int]] = frozenset(range(7))

# Payment states from which a new checkout attempt creates a fresh payment
RETRYABLE_PAYMENT_STATUSES: Final[frozenset[PaymentStatus]] = frozenset({
    PaymentStatus.CANCELLED,
    PaymentStatus.FAILED,
    PaymentStatus.EXPIRED,
})

# Payment states still waiting on the card processor
OPEN_PAYMENT_STATUSES: Final[frozenset[PaymentStatus]] = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.REQUIRES_ACTION,
    PaymentStatus.AUTHORIZED,
})


# =============================================================================
# Helpers
# =============================================================================


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def day_of_week(day: date) -> int:
    """Day number with Sunday as 0 and Saturday as 6."""
    return (day.weekday() + 1) % 7


def generate_place_id() -> str:
    """Generate a unique place ID."""
    return f"PLC-{uuid.uuid4().hex[:12].upper()}"


def generate_bid_id() -> str:
    """Generate a unique bid ID."""
    return f"BID-{uuid.uuid4().hex[:12].upper()}"


def generate_payment_id() -> str:
    """Generate a unique payment ID."""
    return f"PAY-{uuid.uuid4().hex[:12].upper()}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# =============================================================================
# Principal
# =============================================================================


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller, as supplied by the identity collaborator.

    The engine uses `principal_id` as the student id on a bid; a caller-supplied
    student id is never accepted.
    """

    principal_id: str
    role: Role
    approval_status: Optional[ApprovalStatus] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_approved_student(self) -> bool:
        return self.role == Role.STUDENT and self.approval_status == ApprovalStatus.APPROVED

    def to_dict(self) -> dict:
        return {
            "principal_id": self.principal_id,
            "role": self.role.value,
            "approval_status": self.approval_status.value if self.approval_status else None,
            "email": self.email,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Principal":
        approval = data.get("approval_status")
        return cls(
            principal_id=data["principal_id"],
            role=Role(data["role"]),
            approval_status=ApprovalStatus(approval) if approval else None,
            email=data.get("email"),
            name=data.get("name"),
        )


# =============================================================================
# Place
# =============================================================================


@dataclass
class Place:
    """
    A listed accommodation unit.

    Owns its availability rules: blackout dates, allowed days of week (Sunday
    is 0, Saturday is 6) and status. `minimum_bid < retail_price`
    always holds.
    """

    name: str
    owner_id: str
    retail_price: Decimal
    minimum_bid: Decimal
    auto_accept_above_minimum: bool = False
    blackout_dates: frozenset[date] = field(default_factory=frozenset)
    allowed_days_of_week: frozenset[int] = ALL_DAYS_OF_WEEK
    status: PlaceStatus = PlaceStatus.DRAFT
    max_inventory: int = 1
    accommodation_type: AccommodationType = AccommodationType.PRIVATE_ROOM

    # Descriptive fields
    short_description: str = ""
    full_description: str = ""
    city: str = ""
    country: str = ""
    address: str = ""
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image_urls: list[str] = field(default_factory=list)

    # Metadata (set by system)
    place_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("name is required and cannot be empty")
        if self.retail_price is None or self.retail_price <= 0:
            raise ValueError("retail_price must be positive")
        if self.minimum_bid is None or self.minimum_bid <= 0:
            raise ValueError("minimum_bid must be positive")
        if self.minimum_bid >= self.retail_price:
            raise ValueError("minimum_bid must be less than retail_price")
        if self.max_inventory < 1:
            raise ValueError("max_inventory must be at least 1")
        if not set(self.allowed_days_of_week) <= ALL_DAYS_OF_WEEK:
            raise ValueError("allowed_days_of_week must be within 0..6")

        self.blackout_dates = frozenset(self.blackout_dates)
        self.allowed_days_of_week = frozenset(self.allowed_days_of_week)

        if not self.place_id:
            self.place_id = generate_place_id()
        now = utcnow()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_live(self) -> bool:
        return self.status == PlaceStatus.LIVE

    def is_date_bookable(self, day: date) -> bool:
        """Check a single night against blackout dates and allowed weekdays."""
        return day not in self.blackout_dates and day_of_week(day) in self.allowed_days_of_week

    def to_dict(self) -> dict:
        """Convert place to dictionary for serialisation."""
        return {
            "place_id": self.place_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "short_description": self.short_description,
            "full_description": self.full_description,
            "city": self.city,
            "country": self.country,
            "address": self.address,
            "email": self.email,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "image_urls": list(self.image_urls),
            "accommodation_type": self.accommodation_type.value,
            "retail_price": money_str(self.retail_price),
            "minimum_bid": money_str(self.minimum_bid),
            "auto_accept_above_minimum": self.auto_accept_above_minimum,
            "blackout_dates": sorted(d.isoformat() for d in self.blackout_dates),
            "allowed_days_of_week": sorted(self.allowed_days_of_week),
            "status": self.status.value,
            "max_inventory": self.max_inventory,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def to_summary_dict(self) -> dict:
        """Short form joined into bid and payment views."""
        return {
            "place_id": self.place_id,
            "name": self.name,
            "city": self.city,
            "country": self.country,
            "email": self.email,
            "image_urls": self.image_urls[:1],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Place":
        """Create place from dictionary."""
        return cls(
            place_id=data.get("place_id"),
            owner_id=data["owner_id"],
            name=data["name"],
            short_description=data.get("short_description", ""),
            full_description=data.get("full_description", ""),
            city=data.get("city", ""),
            country=data.get("country", ""),
            address=data.get("address", ""),
            email=data.get("email"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            image_urls=list(data.get("image_urls", [])),
            accommodation_type=AccommodationType(
                data.get("accommodation_type", AccommodationType.PRIVATE_ROOM.value)
            ),
            retail_price=parse_money(data["retail_price"]),
            minimum_bid=parse_money(data["minimum_bid"]),
            auto_accept_above_minimum=bool(data.get("auto_accept_above_minimum", False)),
            blackout_dates=frozenset(
                date.fromisoformat(d) for d in data.get("blackout_dates", [])
            ),
            allowed_days_of_week=frozenset(data.get("allowed_days_of_week", range(7))),
            status=PlaceStatus(data.get("status", PlaceStatus.DRAFT.value)),
            max_inventory=int(data.get("max_inventory", 1)),
            created_at=_from_iso(data.get("created_at")),
            updated_at=_from_iso(data.get("updated_at")),
        )


# =============================================================================
# Bid
# =============================================================================


@dataclass
class Bid:
    """
    A student's nightly-rate offer for a date range at one place.

    Derived amounts are always computed by the engine. Commission fields are
    only set once the bid is ACCEPTED, using the rate in force at that moment
    (kept on the bid as `commission_rate` for audit).
    """

    place_id: str
    student_id: str
    check_in_date: date
    check_out_date: date
    bid_per_night: Decimal
    total_nights: int
    total_amount: Decimal
    status: BidStatus = BidStatus.PENDING
    rejection_reason: Optional[str] = None

    # Settlement
    commission_rate: Optional[Decimal] = None
    platform_commission: Optional[Decimal] = None
    payable_to_host: Optional[Decimal] = None

    # Payout bookkeeping
    is_paid_to_host: bool = False
    paid_to_host_at: Optional[datetime] = None
    payout_method: Optional[str] = None
    payout_notes: Optional[str] = None

    # Metadata
    bid_id: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.bid_id:
            self.bid_id = generate_bid_id()
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status != BidStatus.PENDING

    @property
    def is_active(self) -> bool:
        """Counts against the one-bid-per-student-per-place rule."""
        return self.status != BidStatus.REJECTED

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> dict:
        """Convert bid to dictionary for serialisation."""
        return {
            "bid_id": self.bid_id,
            "place_id": self.place_id,
            "student_id": self.student_id,
            "check_in_date": self.check_in_date.isoformat(),
            "check_out_date": self.check_out_date.isoformat(),
            "bid_per_night": money_str(self.bid_per_night),
            "total_nights": self.total_nights,
            "total_amount": money_str(self.total_amount),
            "status": self.status.value,
            "rejection_reason": self.rejection_reason,
            "commission_rate": money_str(self.commission_rate),
            "platform_commission": money_str(self.platform_commission),
            "payable_to_host": money_str(self.payable_to_host),
            "is_paid_to_host": self.is_paid_to_host,
            "paid_to_host_at": _iso(self.paid_to_host_at),
            "payout_method": self.payout_method,
            "payout_notes": self.payout_notes,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Bid":
        """Create bid from dictionary."""
        return cls(
            bid_id=data["bid_id"],
            place_id=data["place_id"],
            student_id=data["student_id"],
            check_in_date=date.fromisoformat(data["check_in_date"]),
            check_out_date=date.fromisoformat(data["check_out_date"]),
            bid_per_night=parse_money(data["bid_per_night"]),
            total_nights=int(data["total_nights"]),
            total_amount=parse_money(data["total_amount"]),
            status=BidStatus(data["status"]),
            rejection_reason=data.get("rejection_reason"),
            commission_rate=parse_money(data.get("commission_rate")),
            platform_commission=parse_money(data.get("platform_commission")),
            payable_to_host=parse_money(data.get("payable_to_host")),
            is_paid_to_host=bool(data.get("is_paid_to_host", False)),
            paid_to_host_at=_from_iso(data.get("paid_to_host_at")),
            payout_method=data.get("payout_method"),
            payout_notes=data.get("payout_notes"),
            resolved_by=data.get("resolved_by"),
            resolved_at=_from_iso(data.get("resolved_at")),
            created_at=_from_iso(data.get("created_at")),
            updated_at=_from_iso(data.get("updated_at")),
        )


# =============================================================================
# Payment
# =============================================================================


@dataclass
class Payment:
    """
    Card authorisation/capture record for an ACCEPTED bid.

    A bid may accumulate several payments over retries; only the latest one
    is current. `amount` always equals the bid's total amount.
    """

    bid_id: str
    student_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    failure_reason: Optional[str] = None
    admin_notes: Optional[str] = None

    # Per-transition timestamps
    expires_at: Optional[datetime] = None
    authorized_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.amount is None or self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.payment_id:
            self.payment_id = generate_payment_id()
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_captured(self) -> bool:
        return self.status == PaymentStatus.CAPTURED

    def to_dict(self, include_secret: bool = False) -> dict:
        """Convert payment to dictionary. The client secret is opt-in."""
        data = {
            "payment_id": self.payment_id,
            "bid_id": self.bid_id,
            "student_id": self.student_id,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "intent_id": self.intent_id,
            "failure_reason": self.failure_reason,
            "admin_notes": self.admin_notes,
            "expires_at": _iso(self.expires_at),
            "authorized_at": _iso(self.authorized_at),
            "captured_at": _iso(self.captured_at),
            "cancelled_at": _iso(self.cancelled_at),
            "failed_at": _iso(self.failed_at),
            "expired_at": _iso(self.expired_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_secret:
            data["client_secret"] = self.client_secret
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        """Create payment from dictionary."""
        return cls(
            payment_id=data["payment_id"],
            bid_id=data["bid_id"],
            student_id=data["student_id"],
            amount=parse_money(data["amount"]),
            currency=data["currency"],
            status=PaymentStatus(data["status"]),
            intent_id=data.get("intent_id"),
            client_secret=data.get("client_secret"),
            failure_reason=data.get("failure_reason"),
            admin_notes=data.get("admin_notes"),
            expires_at=_from_iso(data.get("expires_at")),
            authorized_at=_from_iso(data.get("authorized_at")),
            captured_at=_from_iso(data.get("captured_at")),
            cancelled_at=_from_iso(data.get("cancelled_at")),
            failed_at=_from_iso(data.get("failed_at")),
            expired_at=_from_iso(data.get("expired_at")),
            created_at=_from_iso(data.get("created_at")),
            updated_at=_from_iso(data.get("updated_at")),
        )


# =============================================================================
# Student Profile
# =============================================================================


@dataclass
class StudentProfile:
    """
    Student identity record awaiting or holding admin approval.

    The ID document lives in object storage; only its URL is kept here.
    """

    student_id: str
    email: str
    name: str = ""
    student_id_url: Optional[str] = None
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.student_id:
            raise ValueError("student_id is required")
        if not self.email or "@" not in self.email:
            raise ValueError("A valid email is required")
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "email": self.email,
            "name": self.name,
            "student_id_url": self.student_id_url,
            "approval_status": self.approval_status.value,
            "rejection_reason": self.rejection_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def to_summary_dict(self) -> dict:
        return {"student_id": self.student_id, "name": self.name, "email": self.email}

    @classmethod
    def from_dict(cls, data: dict) -> "StudentProfile":
        return cls(
            student_id=data["student_id"],
            email=data["email"],
            name=data.get("name", ""),
            student_id_url=data.get("student_id_url"),
            approval_status=ApprovalStatus(data.get("approval_status", "PENDING")),
            rejection_reason=data.get("rejection_reason"),
            created_at=_from_iso(data.get("created_at")),
            updated_at=_from_iso(data.get("updated_at")),
        )
