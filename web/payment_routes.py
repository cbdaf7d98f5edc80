"""
Payment Routes - Card Checkout, Processor Webhooks and Operator Actions

Routes:
- POST /payments/create-intent       - Start or resume checkout for a bid (approved student)
- GET  /payments/bid/{bid_id}        - Current payment for a bid
- POST /payments/{id}/confirm        - Re-read intent after card confirmation (student)
- POST /payments/webhook             - Signed processor notifications
- GET  /payments                     - List payments (admin)
- POST /payments/expire              - Sweep overdue authorizations (admin)
- GET  /payments/{id}                - Payment detail (admin)
- POST /payments/{id}/capture        - Capture held funds (admin)
- POST /payments/{id}/cancel         - Release hold (admin)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.bidding import BiddingService, PaymentStatus, Principal, paginate
from processor.webhooks import SIGNATURE_HEADER, WebhookSignatureError, construct_event
from web.auth import (
    get_current_principal,
    get_service,
    require_admin,
    require_approved_student,
    require_student,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# =============================================================================
# Request Models
# =============================================================================


class CreateIntentRequest(BaseModel):
    bid_id: str


class CaptureRequest(BaseModel):
    admin_notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    admin_notes: Optional[str] = None


# =============================================================================
# Student
# =============================================================================


@router.post("/create-intent")
def create_intent(
    body: CreateIntentRequest,
    principal: Principal = Depends(require_approved_student),
    service: BiddingService = Depends(get_service),
):
    """
    Start checkout. Returns the open payment if one exists (200), otherwise
    creates a new one (201). The client secret is only returned here.
    """
    payment, created = service.create_payment_intent(principal, body.bid_id)
    return JSONResponse(
        {
            "message": "Payment initiated" if created else "Payment already in progress",
            "payment": payment.to_dict(),
            "client_secret": payment.client_secret,
        },
        status_code=201 if created else 200,
    )


@router.get("/bid/{bid_id}")
def payment_for_bid(
    bid_id: str,
    principal: Principal = Depends(get_current_principal),
    service: BiddingService = Depends(get_service),
):
    payment = service.payment_for_bid(principal, bid_id)
    return JSONResponse({"payment": payment.to_dict() if payment else None})


@router.post("/{payment_id}/confirm")
def confirm_payment(
    payment_id: str,
    principal: Principal = Depends(require_student),
    service: BiddingService = Depends(get_service),
):
    """Called by the client after the card confirmation step finishes."""
    outcome = service.confirm_payment(principal, payment_id)
    status = outcome.payment.status
    message = (
        "Payment authorized successfully. Funds are held."
        if status == PaymentStatus.AUTHORIZED
        else f"Payment status: {status.value}"
    )
    return JSONResponse({"message": message, "payment": outcome.payment.to_dict()})


# =============================================================================
# Processor
# =============================================================================


@router.post("/webhook")
async def processor_webhook(
    request: Request,
    service: BiddingService = Depends(get_service),
):
    """
    Receive a processor event. Replays, unknown events and stale events are
    acknowledged with 200 so the processor stops retrying.
    """
    secret = request.app.state.config.webhook_secret
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")

    payload = await request.body()
    event = construct_event(payload, request.headers.get(SIGNATURE_HEADER), secret)

    # Off the event loop: applying the event waits on the repository lock
    outcome = await run_in_threadpool(service.apply_processor_event, event)
    return JSONResponse({
        "received": True,
        "applied": bool(outcome and outcome.applied),
    })


# =============================================================================
# Admin
# =============================================================================


@router.get("")
def list_payments(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    try:
        status_filter = PaymentStatus(status.upper()) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown payment status: {status}")
    payments = service.list_payments(status_filter)
    return JSONResponse(paginate(payments, page, limit).to_dict(lambda p: p.to_dict()))


@router.post("/expire")
def expire_payments(
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    expired = service.expire_overdue_payments()
    return JSONResponse({
        "expired": len(expired),
        "payment_ids": [p.payment_id for p in expired],
    })


@router.get("/{payment_id}")
def get_payment(
    payment_id: str,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    return JSONResponse(service.get_payment(payment_id).to_dict())


@router.post("/{payment_id}/capture")
def capture_payment(
    payment_id: str,
    body: Optional[CaptureRequest] = None,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    payment = service.capture_payment(payment_id, admin_notes=body.admin_notes if body else None)
    logger.info("Payment %s captured by %s", payment_id, principal.principal_id)
    return JSONResponse({
        "message": "Payment captured successfully",
        "payment": payment.to_dict(),
    })


@router.post("/{payment_id}/cancel")
def cancel_payment(
    payment_id: str,
    body: Optional[CancelRequest] = None,
    principal: Principal = Depends(require_admin),
    service: BiddingService = Depends(get_service),
):
    body = body or CancelRequest()
    payment = service.cancel_payment(payment_id, reason=body.reason, admin_notes=body.admin_notes)
    logger.info("Payment %s cancelled by %s", payment_id, principal.principal_id)
    return JSONResponse({
        "message": "Payment cancelled. Held funds have been released.",
        "payment": payment.to_dict(),
    })
