"""
Bid Routes - Submitting, Resolving and Settling Bids

Routes:
- POST  /bids                   - Submit a bid (approved student)
- GET   /bids/my                - Caller's bids (student)
- GET   /bids/place/{place_id}  - Caller's latest bid for a place (student)
- GET   /bids/hotel             - Bids on the caller's places (host)
- GET   /bids/hotel/summary     - Payout totals for the caller's places (host)
- GET   /bids                   - All bids (admin)
- GET   /bids/stats             - Bid counts by status (admin)
- GET   /bids/{id}              - Bid detail (owner student, host of the place, admin)
- PATCH /bids/{id}/status       - Accept or reject a pending bid (admin)
- PATCH /bids/{id}/payout       - Record host payout bookkeeping (admin)
- GET   /bids/{id}/invoice.pdf  - Booking invoice (host of the place, admin)
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from core.bidding import BiddingService, BidStatus, Principal, Role, paginate
from core.bidding.resolution import RESOLUTION_MESSAGES
from reporting.invoice_pdf import build_invoice_data, generate_invoice_pdf
from web.auth import (
    get_current_principal,
    get_service,
    require_admin,
    require_approved_student,
    require_host,
    require_host_or_admin,
    require_student,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bids", tags=["bids"])


# =============================================================================
# Request Models
# =============================================================================


class BidCreateRequest(BaseModel):
    """Untrusted bid input; dates and amount are checked by intake validation."""

    place_id: str
    check_in_date: Optional[str] = None
    check_out_date: Optional[str] = None
    bid_per_night: Optional[Union[str, int, float]] = None


class BidStatusRequest(BaseModel):
    status: str
    rejection_reason: Optional[str] = None


class PayoutRequest(BaseModel):
    payout_method: Optional[str] = None
    is_paid_to_host: Optional[bool] = None
    payout_notes: Optional[str] = None


def _parse_status(status: Optional[str]) -> Optional[BidStatus]:
    if not status:
        return None
    try:
        return BidStatus(status.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown bid status: {status}")


def _page(service: BiddingService, bids, page: int, limit: int, include_settlement: bool):
    return paginate(bids, page, limit).to_dict(
        lambda b: service.bid_detail(b, include_settlement=include_settlement)
    )


# =============================================================================
# Student
# =============================================================================


@router.post("", status_code=201)
def submit_bid(
    body: BidCreateRequest,
    principal: Principal = Depends(require_approved_student),
    service: BiddingService = Depends(get_service),
):
    """
    Submit a bid. The bid is accepted, rejected or queued immediately; a
    below-minimum bid is stored as REJECTED and still returns 201.
    """
    bid = service.submit_bid(
        principal,
        body.place_id,
        body.check_in_date,
        body.check_out_date,
        body.bid_per_night,
    )
    return JSONResponse(
        {
            "message": RESOLUTION_MESSAGES[bid.status],
            "bid": service.bid_detail(bid, include_settlement=False),
        },
        status_code=201,
    )


@router.get("/my")
def my_bids(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_student),
    service: BiddingService = Depends(get_service),
):
    bids = service.my_bids(principal, _parse_status(status))
    return JSONResponse(_page(service, bids, page, limit, include_settlement=False))


@router.get("/place/{place_id}")
def my_bid_for_place(
    place_id: str,
    principal: Principal = Depends(require_student),
    service: BiddingService = Depends(get_service),
):
    """Latest bid of the caller for a place, or {"bid": null}."""
    bid = service.my_bid_for_place(principal, place_id)
    return JSONResponse(
        {"bid": service.bid_detail(bid, include_settlement=False) if bid else None}
    )


# =============================================================================
# Host
# =============================================================================


@router.get("/hotel")
def host_bids(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_host),
    service: BiddingService = Depends(get_service),
):
    bids = service.host_bids(principal, _parse_status(status))
    return JSONResponse(_page(service, bids, page, limit, include_settlement=True))


@router.get("/hotel/summary")
def host_summary(
    principal: Principal = Depends(require_host),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.host_summary(principal).to_dict())


# =============================================================================
# Admin
# =============================================================================


@router.get("")
def list_bids(
    status: Optional[str] = Query(None),
    place_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    bids = service.list_bids(status=_parse_status(status), place_id=place_id)
    return JSONResponse(_page(service, bids, page, limit, include_settlement=True))


@router.get("/stats")
def bid_stats(
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.bid_stats())


@router.get("/{bid_id}")
def get_bid(
    bid_id: str,
    principal: Principal = Depends(get_current_principal),
    service: BiddingService = Depends(get_service),
):
    bid = service.get_bid_for(principal, bid_id)
    return JSONResponse(
        service.bid_detail(bid, include_settlement=principal.role != Role.STUDENT)
    )


@router.patch("/{bid_id}/status")
def resolve_bid(
    bid_id: str,
    body: BidStatusRequest,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    """Accept or reject a PENDING bid."""
    decision = _parse_status(body.status)
    if decision is None:
        raise HTTPException(status_code=400, detail="status is required")
    bid = service.resolve_bid(
        principal,
        bid_id,
        decision,
        rejection_reason=body.rejection_reason,
    )
    return JSONResponse(service.bid_detail(bid))


@router.patch("/{bid_id}/payout")
def record_payout(
    bid_id: str,
    body: PayoutRequest,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    """Record an out-of-band payout. Only fields present in the body change."""
    bid = service.record_payout(bid_id, **body.model_dump(exclude_unset=True))
    return JSONResponse(service.bid_detail(bid))


@router.get("/{bid_id}/invoice.pdf")
def bid_invoice(
    bid_id: str,
    principal: Principal = Depends(require_host_or_admin),
    service: BiddingService = Depends(get_service),
):
    """Download the booking invoice PDF."""
    bid = service.get_bid_for(principal, bid_id)
    repo = service.repository
    data = build_invoice_data(
        bid,
        repo.get_place(bid.place_id),
        repo.get_student(bid.student_id),
        repo.current_payment_for_bid(bid.bid_id),
        fallback_rate=service.config.commission_rate,
        currency=service.config.currency,
    )
    pdf_bytes = generate_invoice_pdf(data)
    logger.info("Invoice %s generated for %s", data.invoice_number, principal.principal_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{data.invoice_number}.pdf"'},
    )
