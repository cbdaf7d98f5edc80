"""
Tests for Booking Invoice Generation

Tests covering:
1. Invoice data assembly from stored records
2. PDF rendering (valid PDF bytes, markup-safe text)
3. Display formatting helpers
4. Operator CLI (invoice, expiry sweep)
"""

from __future__ import annotations

import os
import tempfile
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from core.bidding.repository import BiddingRepository
from core.bidding.schema import (
    Bid,
    BidStatus,
    Payment,
    PaymentStatus,
    Place,
    StudentProfile,
)
from core.bidding.settlement import apply_settlement
from reporting import cli
from reporting.invoice_pdf import (
    InvoiceGenerator,
    build_invoice_data,
    generate_invoice_pdf,
    invoice_number_for,
)
from utils.config import Config
from utils.formatting import format_currency, format_percent


RATE = Decimal("0.0666")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def place():
    return Place(
        name="Pod <Central> & Co",
        owner_id="host-1",
        retail_price=Decimal("100"),
        minimum_bid=Decimal("60"),
        city="Lisbon",
        country="Portugal",
        email="desk@pod.example",
    )


@pytest.fixture
def student():
    return StudentProfile(student_id="student-1", email="ana@uni.example", name="Ana")


def make_bid(place, status=BidStatus.ACCEPTED) -> Bid:
    bid = Bid(
        bid_id="BID-ABCDEF123456",
        place_id=place.place_id,
        student_id="student-1",
        check_in_date=date(2026, 3, 3),
        check_out_date=date(2026, 3, 6),
        bid_per_night=Decimal("70"),
        total_nights=3,
        total_amount=Decimal("210.00"),
        status=status,
        created_at=datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc),
    )
    if status == BidStatus.ACCEPTED:
        apply_settlement(bid, RATE)
    return bid


# =============================================================================
# Invoice Data
# =============================================================================


class TestBuildInvoiceData:
    """Tests for assembling invoice fields."""

    def test_accepted_bid_fields(self, place, student):
        bid = make_bid(place)
        payment = Payment(
            bid_id=bid.bid_id,
            student_id="student-1",
            amount=bid.total_amount,
            currency="usd",
            status=PaymentStatus.CAPTURED,
        )
        data = build_invoice_data(bid, place, student, payment, RATE, currency="usd")

        assert data.invoice_number == "INV-BID-ABCD"
        assert data.issued_on == date(2026, 3, 2)
        assert data.place_location == "Lisbon, Portugal"
        assert data.guest_name == "Ana"
        assert data.platform_commission == Decimal("13.99")
        assert data.payable_to_host == Decimal("196.01")
        assert data.commission_rate_percent == Decimal("6.66")
        assert data.student_payment_captured is True
        assert data.currency == "USD"

    def test_pending_bid_prints_full_total_as_payable(self, place):
        bid = make_bid(place, status=BidStatus.PENDING)
        data = build_invoice_data(bid, place, None, None, RATE)
        assert data.platform_commission == Decimal("0.00")
        assert data.payable_to_host == Decimal("210.00")
        assert data.guest_name == "student-1"
        assert data.student_payment_captured is False

    def test_invoice_number_uses_bid_prefix(self):
        assert invoice_number_for("bid-abcdef") == "INV-BID-ABCD"


# =============================================================================
# Rendering
# =============================================================================


class TestInvoicePdf:
    """Tests for PDF output."""

    def test_renders_pdf_bytes(self, place, student):
        bid = make_bid(place)
        bid.is_paid_to_host = True
        bid.paid_to_host_at = datetime(2026, 3, 10, tzinfo=timezone.utc)
        bid.payout_method = "bank_transfer"
        data = build_invoice_data(bid, place, student, None, RATE)

        pdf = generate_invoice_pdf(data)
        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000

    def test_markup_characters_do_not_break_rendering(self, place):
        """Names containing <, > and & are escaped before layout."""
        student = StudentProfile(student_id="s-1", email="a&b@uni.example", name="<Ana>")
        data = build_invoice_data(make_bid(place), place, student, None, RATE, currency="eur")
        assert InvoiceGenerator().generate_to_buffer(data).startswith(b"%PDF")


class TestFormatting:
    """Tests for display helpers."""

    def test_format_currency(self):
        assert format_currency(Decimal("1234.5"), "USD") == "$1,234.50"
        assert format_currency(Decimal("10"), "CHF") == "CHF 10.00"
        assert format_currency(None) == "-"

    def test_format_percent(self):
        assert format_percent(Decimal("6.66")) == "6.66%"


# =============================================================================
# CLI
# =============================================================================


class TestCli:
    """Tests for the operator CLI over a persisted data file."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def test_invoice_command_writes_pdf(self, data_dir, place, capsys):
        repo = BiddingRepository(os.path.join(data_dir, "bidding.json"))
        repo.add_place(place)
        bid = make_bid(place)
        repo.insert_bid(bid)

        out_dir = os.path.join(data_dir, "invoices")
        config = Config(data_dir=data_dir, session_secret="x")
        assert cli.main(["invoice", bid.bid_id, "--output-dir", out_dir], config=config) == 0

        with open(os.path.join(out_dir, "INV-BID-ABCD.pdf"), "rb") as f:
            assert f.read().startswith(b"%PDF")
        assert "Invoice generated" in capsys.readouterr().out

    def test_invoice_command_unknown_bid(self, data_dir):
        config = Config(data_dir=data_dir, session_secret="x")
        assert cli.main(["invoice", "BID-MISSING"], config=config) == 1

    def test_expire_command(self, data_dir, capsys):
        config = Config(data_dir=data_dir, session_secret="x")
        assert cli.main(["expire"], config=config) == 0
        assert "0 payment(s) expired" in capsys.readouterr().out
