"""
Booking Invoice - One-Page PDF for Hosts and Admins

Summarises one bid: property, guest, stay, the commission split and where
the money stands (student payment captured or not, host paid out or not).

Uses ReportLab platypus for deterministic output: the same bid always
produces the same document content.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import (
    HRFlowable,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from core.bidding.schema import Bid, Payment, PaymentStatus, Place, StudentProfile
from core.bidding.settlement import effective_commission_rate
from utils.formatting import format_currency, format_percent


# =============================================================================
# Invoice Data
# =============================================================================


@dataclass(frozen=True)
class InvoiceData:
    """Everything printed on a booking invoice."""

    invoice_number: str
    issued_on: date
    bid_status: str

    place_name: str
    place_location: str
    place_email: Optional[str]

    guest_name: str
    guest_email: Optional[str]

    check_in_date: date
    check_out_date: date
    total_nights: int
    bid_per_night: Decimal
    total_amount: Decimal
    commission_rate_percent: Decimal
    platform_commission: Decimal
    payable_to_host: Decimal

    student_payment_captured: bool
    host_paid: bool
    paid_to_host_at: Optional[datetime]
    payout_method: Optional[str]
    currency: str = "USD"


def invoice_number_for(bid_id: str) -> str:
    return f"INV-{bid_id[:8].upper()}"


def build_invoice_data(
    bid: Bid,
    place: Optional[Place],
    student: Optional[StudentProfile],
    payment: Optional[Payment],
    fallback_rate: Decimal,
    currency: str = "USD",
) -> InvoiceData:
    """
    Assemble invoice fields from stored records.

    Bids without a commission split (PENDING or REJECTED) print zero
    commission and the full total as payable.
    """
    commission = bid.platform_commission if bid.platform_commission is not None else Decimal("0.00")
    payable = bid.payable_to_host if bid.payable_to_host is not None else bid.total_amount

    location = ", ".join(part for part in (place.city, place.country) if part) if place else ""
    return InvoiceData(
        invoice_number=invoice_number_for(bid.bid_id),
        issued_on=bid.created_at.date(),
        bid_status=bid.status.value,
        place_name=place.name if place else bid.place_id,
        place_location=location,
        place_email=place.email if place else None,
        guest_name=(student.name if student and student.name else bid.student_id),
        guest_email=student.email if student else None,
        check_in_date=bid.check_in_date,
        check_out_date=bid.check_out_date,
        total_nights=bid.total_nights,
        bid_per_night=bid.bid_per_night,
        total_amount=bid.total_amount,
        commission_rate_percent=effective_commission_rate(bid, fallback_rate),
        platform_commission=commission,
        payable_to_host=payable,
        student_payment_captured=bool(payment and payment.status == PaymentStatus.CAPTURED),
        host_paid=bid.is_paid_to_host,
        paid_to_host_at=bid.paid_to_host_at,
        payout_method=bid.payout_method,
        currency=currency.upper(),
    )


# =============================================================================
# Styles
# =============================================================================


class Palette:
    """Print-friendly colours."""

    CHARCOAL = colors.Color(0.2, 0.2, 0.22)
    GRAY = colors.Color(0.5, 0.5, 0.5)
    LIGHT_GRAY = colors.Color(0.85, 0.85, 0.85)
    PALE_GRAY = colors.Color(0.95, 0.95, 0.95)
    ACCENT = colors.Color(0.15, 0.25, 0.4)
    SUCCESS = colors.Color(0.15, 0.4, 0.25)
    WARNING = colors.Color(0.5, 0.4, 0.15)


def get_invoice_styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name='InvoiceBrand',
        parent=styles['Normal'],
        fontSize=8,
        leading=10,
        textColor=Palette.ACCENT,
        fontName='Helvetica-Bold',
        letterSpacing=1.5,
    ))
    styles.add(ParagraphStyle(
        name='InvoiceNumber',
        parent=styles['Normal'],
        fontSize=18,
        leading=22,
        textColor=Palette.CHARCOAL,
        fontName='Helvetica-Bold',
        alignment=TA_LEFT,
    ))
    styles.add(ParagraphStyle(
        name='InvoiceMeta',
        parent=styles['Normal'],
        fontSize=8,
        leading=11,
        textColor=Palette.GRAY,
    ))
    styles.add(ParagraphStyle(
        name='InvoiceMetaRight',
        parent=styles['Normal'],
        fontSize=8,
        leading=11,
        textColor=Palette.GRAY,
        alignment=TA_RIGHT,
    ))
    styles.add(ParagraphStyle(
        name='InvoiceLabel',
        parent=styles['Normal'],
        fontSize=7.5,
        leading=10,
        textColor=Palette.GRAY,
        fontName='Helvetica-Bold',
        spaceBefore=4 * mm,
        spaceAfter=1.5 * mm,
    ))
    styles.add(ParagraphStyle(
        name='InvoiceBody',
        parent=styles['Normal'],
        fontSize=9.5,
        leading=13,
        textColor=Palette.CHARCOAL,
    ))
    return styles


# =============================================================================
# Generator
# =============================================================================


class InvoiceGenerator:
    """
    Renders InvoiceData to a one-page A4 PDF.

    Usage:
        pdf_bytes = InvoiceGenerator().generate_to_buffer(data)
    """

    PAGE_WIDTH, PAGE_HEIGHT = A4
    MARGIN_LEFT = 18*mm
    MARGIN_RIGHT = 18*mm
    MARGIN_TOP = 18*mm
    MARGIN_BOTTOM = 22*mm

    def __init__(self):
        self.styles = get_invoice_styles()

    def generate_to_buffer(self, data: InvoiceData) -> bytes:
        """Generate the invoice and return it as bytes."""
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=self.MARGIN_LEFT,
            rightMargin=self.MARGIN_RIGHT,
            topMargin=self.MARGIN_TOP,
            bottomMargin=self.MARGIN_BOTTOM,
            title=f"Booking Invoice {data.invoice_number}",
            author="Campus Bid Engine",
            subject="Booking invoice",
        )

        story = []
        story.extend(self._build_header(data))
        story.extend(self._build_parties(data))
        story.extend(self._build_stay(data))
        story.extend(self._build_amounts(data))
        story.extend(self._build_payment_status(data))

        doc.build(story, onFirstPage=self._draw_footer, onLaterPages=self._draw_footer)
        return buffer.getvalue()

    def _draw_footer(self, canvas_obj: canvas.Canvas, doc):
        canvas_obj.saveState()
        canvas_obj.setFont('Helvetica', 7)
        canvas_obj.setFillColor(Palette.GRAY)
        canvas_obj.drawString(
            self.MARGIN_LEFT,
            self.MARGIN_BOTTOM - 10*mm,
            "CAMPUS BID ENGINE",
        )
        canvas_obj.drawRightString(
            self.PAGE_WIDTH - self.MARGIN_RIGHT,
            self.MARGIN_BOTTOM - 10*mm,
            "Payouts are settled outside the platform.",
        )
        canvas_obj.restoreState()

    def _build_header(self, data: InvoiceData) -> list:
        left = [
            Paragraph("BOOKING INVOICE", self.styles['InvoiceBrand']),
            Paragraph(data.invoice_number, self.styles['InvoiceNumber']),
            Paragraph(f"Issued {data.issued_on.strftime('%d %b %Y')}", self.styles['InvoiceMeta']),
        ]
        right = [
            Paragraph("Status", self.styles['InvoiceMetaRight']),
            Paragraph(f"<b>{data.bid_status}</b>", self.styles['InvoiceMetaRight']),
        ]
        header = Table([[left, right]], colWidths=[120*mm, 54*mm])
        header.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), 0),
            ('RIGHTPADDING', (0, 0), (-1, -1), 0),
        ]))
        return [
            header,
            Spacer(1, 4*mm),
            HRFlowable(width="100%", thickness=0.5, color=Palette.LIGHT_GRAY),
        ]

    def _build_parties(self, data: InvoiceData) -> list:
        property_lines = [f"<b>{escape(data.place_name)}</b>"]
        if data.place_location:
            property_lines.append(escape(data.place_location))
        if data.place_email:
            property_lines.append(escape(data.place_email))

        guest_lines = [f"<b>{escape(data.guest_name)}</b>"]
        if data.guest_email:
            guest_lines.append(escape(data.guest_email))

        cells = [
            [
                Paragraph("PROPERTY", self.styles['InvoiceLabel']),
                Paragraph("GUEST", self.styles['InvoiceLabel']),
            ],
            [
                Paragraph("<br/>".join(property_lines), self.styles['InvoiceBody']),
                Paragraph("<br/>".join(guest_lines), self.styles['InvoiceBody']),
            ],
        ]
        table = Table(cells, colWidths=[87*mm, 87*mm])
        table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), 0),
        ]))
        return [table]

    def _build_stay(self, data: InvoiceData) -> list:
        rows = [
            ["Check-in", "Check-out", "Duration"],
            [
                data.check_in_date.strftime('%a %d %b %Y'),
                data.check_out_date.strftime('%a %d %b %Y'),
                f"{data.total_nights} night{'s' if data.total_nights != 1 else ''}",
            ],
        ]
        table = Table(rows, colWidths=[58*mm, 58*mm, 58*mm])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica'),
            ('FONTNAME', (0, 1), (-1, 1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, 0), 7.5),
            ('FONTSIZE', (0, 1), (-1, 1), 9.5),
            ('TEXTCOLOR', (0, 0), (-1, 0), Palette.GRAY),
            ('TEXTCOLOR', (0, 1), (-1, 1), Palette.CHARCOAL),
            ('BACKGROUND', (0, 0), (-1, -1), Palette.PALE_GRAY),
            ('TOPPADDING', (0, 0), (-1, -1), 2.5*mm),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 2.5*mm),
        ]))
        return [Paragraph("STAY", self.styles['InvoiceLabel']), table]

    def _build_amounts(self, data: InvoiceData) -> list:
        currency = data.currency
        rows = [
            [
                f"{format_currency(data.bid_per_night, currency)} x {data.total_nights} nights",
                format_currency(data.total_amount, currency),
            ],
            [
                f"Platform commission ({format_percent(data.commission_rate_percent)})",
                f"- {format_currency(data.platform_commission, currency)}",
            ],
            ["Payable to host", format_currency(data.payable_to_host, currency)],
        ]
        table = Table(rows, colWidths=[124*mm, 50*mm])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -2), 'Helvetica'),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9.5),
            ('TEXTCOLOR', (0, 0), (-1, -1), Palette.CHARCOAL),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('LINEABOVE', (0, -1), (-1, -1), 0.75, Palette.CHARCOAL),
            ('TOPPADDING', (0, 0), (-1, -1), 2*mm),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 2*mm),
            ('LEFTPADDING', (0, 0), (-1, -1), 0),
            ('RIGHTPADDING', (0, 0), (-1, -1), 0),
        ]))
        return [Paragraph("AMOUNTS", self.styles['InvoiceLabel']), table]

    def _build_payment_status(self, data: InvoiceData) -> list:
        student_state = "Captured" if data.student_payment_captured else "Pending"
        if data.host_paid:
            paid_on = data.paid_to_host_at.strftime('%d %b %Y') if data.paid_to_host_at else ""
            method = (data.payout_method or "").replace("_", " ")
            payout_state = " ".join(part for part in ("Paid", paid_on, method and f"via {method}") if part)
        else:
            payout_state = "Awaiting payout"

        rows = [
            ["Student payment", student_state],
            ["Host payout", payout_state],
        ]
        table = Table(rows, colWidths=[124*mm, 50*mm])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('TEXTCOLOR', (0, 0), (0, -1), Palette.CHARCOAL),
            ('TEXTCOLOR', (1, 0), (1, 0),
             Palette.SUCCESS if data.student_payment_captured else Palette.WARNING),
            ('TEXTCOLOR', (1, 1), (1, 1), Palette.SUCCESS if data.host_paid else Palette.WARNING),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, Palette.LIGHT_GRAY),
            ('TOPPADDING', (0, 0), (-1, -1), 2*mm),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 2*mm),
        ]))
        return [Paragraph("PAYMENT STATUS", self.styles['InvoiceLabel']), table]


def generate_invoice_pdf(data: InvoiceData) -> bytes:
    """Convenience wrapper around InvoiceGenerator."""
    return InvoiceGenerator().generate_to_buffer(data)
