"""
Settlement Calculator - Commission Split and Payout Bookkeeping

Splits an accepted bid's total into platform commission and the amount
payable to the host, and records out-of-band payouts to hosts.

The split is computed once, when the bid becomes ACCEPTED, with the rate
passed in by the caller. Later rate changes never touch resolved bids.
Payout recording moves no money; it is a record of a transfer made elsewhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from core.bidding.errors import (
    InvalidPayoutError,
    InvalidStateTransitionError,
    PaymentNotCapturedError,
)
from core.bidding.money import round2
from core.bidding.schema import Bid, BidStatus, Payment, PaymentStatus, utcnow


logger = logging.getLogger(__name__)

_UNSET = object()


# =============================================================================
# Commission Split
# =============================================================================


@dataclass(frozen=True)
class SettlementSplit:
    """Commission split of a bid total."""

    commission_rate: Decimal
    platform_commission: Decimal
    payable_to_host: Decimal


def compute_settlement(total_amount: Decimal, commission_rate: Decimal) -> SettlementSplit:
    """
    Split a total into commission and host payable.

    Commission is rounded half-up to cents; the host gets the exact
    remainder, so the two always add back to the total.
    """
    if commission_rate < 0 or commission_rate >= 1:
        raise ValueError("commission_rate must be a fraction in [0, 1)")
    commission = round2(total_amount * commission_rate)
    return SettlementSplit(
        commission_rate=commission_rate,
        platform_commission=commission,
        payable_to_host=total_amount - commission,
    )


def apply_settlement(bid: Bid, commission_rate: Decimal) -> Bid:
    """
    Stamp the commission split on an ACCEPTED bid.

    Does nothing if the bid already carries a split.
    """
    if bid.status != BidStatus.ACCEPTED:
        raise InvalidStateTransitionError(
            f"Cannot settle bid {bid.bid_id} with status {bid.status.value}"
        )
    if bid.platform_commission is not None:
        return bid

    split = compute_settlement(bid.total_amount, commission_rate)
    bid.commission_rate = split.commission_rate
    bid.platform_commission = split.platform_commission
    bid.payable_to_host = split.payable_to_host
    return bid


def effective_commission_rate(bid: Bid, fallback_rate: Decimal) -> Decimal:
    """
    Commission rate as a display percentage, computed back out of the stored
    amounts. Falls back to the configured rate for bids without a split.
    """
    if bid.total_amount and bid.platform_commission is not None:
        return round2(bid.platform_commission / bid.total_amount * 100)
    return round2(fallback_rate * 100)


# =============================================================================
# Payout Recording
# =============================================================================


def record_payout(
    bid: Bid,
    payment: Optional[Payment],
    allowed_methods: Iterable[str],
    payout_method=_UNSET,
    is_paid_to_host: Optional[bool] = None,
    payout_notes=_UNSET,
    now: Optional[datetime] = None,
) -> Bid:
    """
    Record payout bookkeeping on a bid.

    Only permitted once the bid's current payment is CAPTURED; this guard runs
    before any field is looked at. Fields left unset are not changed.

    Args:
        bid: The accepted bid
        payment: The bid's current payment, if any
        allowed_methods: Configured payout methods
        payout_method: New payout method, or None to clear
        is_paid_to_host: True stamps paid_to_host_at, False clears it
        payout_notes: Free-text notes, or None to clear
        now: Timestamp to stamp (defaults to current UTC time)

    Returns:
        The updated bid

    Raises:
        PaymentNotCapturedError: If the payment has not been captured
        InvalidPayoutError: If the payout method is not configured
    """
    if payment is None or payment.bid_id != bid.bid_id or payment.status != PaymentStatus.CAPTURED:
        status = payment.status.value if payment else "none"
        raise PaymentNotCapturedError(
            f"Student payment must be captured before payout can be recorded "
            f"(payment status: {status})"
        )

    if payout_method is not _UNSET and payout_method is not None:
        method = str(payout_method).strip().lower()
        allowed = tuple(allowed_methods)
        if method not in allowed:
            raise InvalidPayoutError(
                f"Unknown payout method: {payout_method}. Allowed: {', '.join(allowed)}"
            )
        bid.payout_method = method
    elif payout_method is None:
        bid.payout_method = None

    if is_paid_to_host is True and not bid.is_paid_to_host:
        bid.is_paid_to_host = True
        bid.paid_to_host_at = now or utcnow()
    elif is_paid_to_host is False:
        bid.is_paid_to_host = False
        bid.paid_to_host_at = None

    if payout_notes is not _UNSET:
        bid.payout_notes = payout_notes.strip() if payout_notes else None

    bid.touch()
    logger.info(
        "Payout recorded for bid %s: method=%s paid=%s",
        bid.bid_id,
        bid.payout_method,
        bid.is_paid_to_host,
    )
    return bid


# =============================================================================
# Host Summary
# =============================================================================


@dataclass(frozen=True)
class HostPayoutSummary:
    """Totals over a host's accepted bids."""

    accepted_bids: int
    gross_total: Decimal
    commission_total: Decimal
    payable_total: Decimal
    paid_out_total: Decimal

    @property
    def outstanding_total(self) -> Decimal:
        return self.payable_total - self.paid_out_total

    def to_dict(self) -> dict:
        return {
            "accepted_bids": self.accepted_bids,
            "gross_total": str(self.gross_total),
            "commission_total": str(self.commission_total),
            "payable_total": str(self.payable_total),
            "paid_out_total": str(self.paid_out_total),
            "outstanding_total": str(self.outstanding_total),
        }


def summarise_host_payouts(bids: Iterable[Bid]) -> HostPayoutSummary:
    """Aggregate settlement totals over the ACCEPTED bids given."""
    zero = Decimal("0.00")
    count = 0
    gross = commission = payable = paid = zero

    for bid in bids:
        if bid.status != BidStatus.ACCEPTED or bid.payable_to_host is None:
            continue
        count += 1
        gross += bid.total_amount
        commission += bid.platform_commission
        payable += bid.payable_to_host
        if bid.is_paid_to_host:
            paid += bid.payable_to_host

    return HostPayoutSummary(
        accepted_bids=count,
        gross_total=gross,
        commission_total=commission,
        payable_total=payable,
        paid_out_total=paid,
    )
