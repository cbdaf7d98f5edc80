#!/usr/bin/env python3
"""
Operator CLI for the bidding engine data file.

Usage:
    python -m reporting.cli invoice <bid_id> [--output-dir invoices]
    python -m reporting.cli expire

Examples:
    # Write the booking invoice for one bid
    python -m reporting.cli invoice BID-3F2A9C01D4E5

    # Sweep overdue card authorizations (run from cron)
    python -m reporting.cli expire
"""

import argparse
import logging
import sys
from pathlib import Path

from core.bidding import BiddingRepository, BiddingService
from processor import build_processor
from utils.config import Config

from .invoice_pdf import build_invoice_data, generate_invoice_pdf


def open_service(config: Config) -> BiddingService:
    """Open the service over the configured data file."""
    repository = BiddingRepository(str(Path(config.data_dir) / "bidding.json"))
    return BiddingService(repository, config, build_processor(config))


def cmd_invoice(args, config: Config) -> int:
    """Write the booking invoice PDF for a bid."""
    service = open_service(config)
    repo = service.repository

    bid = repo.get_bid(args.bid_id)
    if bid is None:
        print(f"Error: Bid not found: {args.bid_id}", file=sys.stderr)
        return 1

    data = build_invoice_data(
        bid,
        repo.get_place(bid.place_id),
        repo.get_student(bid.student_id),
        repo.current_payment_for_bid(bid.bid_id),
        fallback_rate=config.commission_rate,
        currency=config.currency,
    )

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"{data.invoice_number}.pdf"
    filepath.write_bytes(generate_invoice_pdf(data))

    print(f"Invoice generated: {filepath}")
    return 0


def cmd_expire(args, config: Config) -> int:
    """Mark overdue open payments EXPIRED."""
    service = open_service(config)
    expired = service.expire_overdue_payments()
    for payment in expired:
        print(f"Expired {payment.payment_id} (bid {payment.bid_id})")
    print(f"{len(expired)} payment(s) expired")
    return 0


def main(argv=None, config: Config = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Campus Bid Engine - operator tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m reporting.cli invoice BID-3F2A9C01D4E5
    python -m reporting.cli expire

Data:
    Reads and writes <DATA_DIR>/bidding.json
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    invoice_parser = subparsers.add_parser(
        "invoice",
        help="Write the booking invoice PDF for a bid",
    )
    invoice_parser.add_argument("bid_id", help="Bid identifier")
    invoice_parser.add_argument(
        "--output-dir",
        default="invoices",
        help="Directory for the PDF (default: invoices)",
    )
    invoice_parser.set_defaults(func=cmd_invoice)

    expire_parser = subparsers.add_parser(
        "expire",
        help="Expire payments whose authorization window has passed",
    )
    expire_parser.set_defaults(func=cmd_expire)

    args = parser.parse_args(argv)
    config = config or Config.load()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
