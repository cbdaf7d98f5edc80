"""
Reporting module for the Campus Bid Engine.

Generates one-page booking invoice PDFs for hosts and admins.

Usage:
    from reporting import build_invoice_data, generate_invoice_pdf

    data = build_invoice_data(bid, place, student, payment, fallback_rate)
    pdf_bytes = generate_invoice_pdf(data)
"""

from .invoice_pdf import (
    InvoiceData,
    InvoiceGenerator,
    build_invoice_data,
    generate_invoice_pdf,
    invoice_number_for,
)

__all__ = [
    "InvoiceData",
    "InvoiceGenerator",
    "build_invoice_data",
    "generate_invoice_pdf",
    "invoice_number_for",
]
