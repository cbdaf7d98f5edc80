"""
Hosted card processor client built on the Stripe SDK.

PaymentIntents are created with manual capture, so funds are held at
authorisation and only taken when an operator captures.
"""

import logging
from typing import Any, Callable, Optional

import requests
import stripe

from core.bidding.errors import ProcessorError
from processor.base import CardProcessor, IntentHandle


logger = logging.getLogger(__name__)


REQUEST_TIMEOUT_SECONDS = 30


class StripeCardProcessor(CardProcessor):
    """
    PaymentIntents over the SDK's resource classes.

    The API key travels with every call instead of living in `stripe.api_key`.
    SDK errors (declines, auth, transport) surface as ProcessorError.
    """

    def __init__(
        self,
        api_key: str,
        timeout: int = REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("api_key is required for the hosted processor")
        self._api_key = api_key
        self._session = session or requests.Session()
        # The SDK's resource classes share one module-level HTTP client
        stripe.default_http_client = stripe.RequestsClient(
            timeout=timeout, session=self._session
        )

    def _call(self, action: str, fn: Callable[..., Any], *args, **kwargs) -> IntentHandle:
        try:
            intent = fn(*args, api_key=self._api_key, **kwargs)
        except stripe.APIConnectionError as e:
            logger.error("Processor %s unreachable: %s", action, e)
            raise ProcessorError(f"Card processor unavailable: {e}") from e
        except stripe.StripeError as e:
            message = e.user_message or str(e)
            logger.error("Processor %s failed: %s", action, message)
            raise ProcessorError(f"Card processor error: {message}") from e
        return _handle(intent)

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        description: str = "",
        idempotency_key: Optional[str] = None,
    ) -> IntentHandle:
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return self._call(
            "create",
            stripe.PaymentIntent.create,
            amount=amount_cents,
            currency=currency,
            capture_method="manual",
            description=description,
            metadata=metadata,
            **options,
        )

    def retrieve_intent(self, intent_id: str) -> IntentHandle:
        return self._call("retrieve", stripe.PaymentIntent.retrieve, intent_id)

    def capture_intent(self, intent_id: str) -> IntentHandle:
        return self._call("capture", stripe.PaymentIntent.capture, intent_id)

    def cancel_intent(self, intent_id: str, reason: Optional[str] = None) -> IntentHandle:
        if reason:
            logger.info("Cancelling intent %s: %s", intent_id, reason)
        return self._call(
            "cancel",
            stripe.PaymentIntent.cancel,
            intent_id,
            cancellation_reason="requested_by_customer",
        )

    def close(self) -> None:
        """Close the session."""
        self._session.close()


def _handle(intent: Any) -> IntentHandle:
    last_error = getattr(intent, "last_payment_error", None)
    return IntentHandle(
        intent_id=intent.id,
        status=intent.status,
        client_secret=getattr(intent, "client_secret", None),
        failure_message=getattr(last_error, "message", None) if last_error else None,
    )
