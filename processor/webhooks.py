"""
Processor webhook verification and parsing.

Verification is delegated to `stripe.Webhook.construct_event`, which checks
the ``t=<timestamp>,v1=<signature>`` header against the endpoint secret and
rejects timestamps outside the tolerance.
"""

import hashlib
import hmac
import time
from typing import Any, Optional

import stripe

from core.bidding.errors import BiddingError, ErrorKind
from core.bidding.payments import ProcessorEvent


DEFAULT_TOLERANCE_SECONDS = 300
SIGNATURE_HEADER = "Stripe-Signature"


class WebhookSignatureError(BiddingError):
    """Webhook signature missing, malformed, stale or wrong."""

    kind = ErrorKind.INVALID_WEBHOOK


def signature_header(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """
    Sign a payload the way the processor does.

    Used to replay captured events locally and in tests; incoming requests
    are only ever checked through `construct_event`.
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def construct_event(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> ProcessorEvent:
    """
    Verify a webhook request and parse it into a ProcessorEvent.

    Raises:
        WebhookSignatureError: If the header is missing, malformed, outside
            the timestamp tolerance, or no signature matches
        BiddingError: If the body is not a payment intent event
    """
    if not header:
        raise WebhookSignatureError("Missing webhook signature")

    try:
        event = stripe.Webhook.construct_event(payload, header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(f"Invalid webhook signature: {e}") from e
    except ValueError as e:
        raise BiddingError(
            f"Unreadable webhook payload: {e}", kind=ErrorKind.INVALID_WEBHOOK
        ) from e

    return to_processor_event(event)


def to_processor_event(event: Any) -> ProcessorEvent:
    """Reduce an SDK event to the fields the engine acts on."""
    try:
        intent = event.data.object
        last_error = getattr(intent, "last_payment_error", None)
        return ProcessorEvent(
            event_id=event.id,
            event_type=event.type,
            intent_id=intent.id,
            failure_message=getattr(last_error, "message", None) if last_error else None,
        )
    except (AttributeError, KeyError, TypeError) as e:
        raise BiddingError(
            f"Unreadable webhook payload: {e}", kind=ErrorKind.INVALID_WEBHOOK
        ) from e
