"""
Mock card processor for development and testing.
Holds intents in memory without external requests.
"""

import threading
from typing import Optional
from uuid import uuid4

from core.bidding.errors import ProcessorError
from processor.base import CardProcessor, IntentHandle


class MockCardProcessor(CardProcessor):
    """
    Offline processor that keeps intents in a dict.

    New intents wait in "requires_confirmation" until `simulate_card()` plays
    the payer's side, standing in for the browser confirming the card.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._intents: dict[str, dict] = {}
        self._idempotency: dict[str, str] = {}

    def _handle(self, intent: dict) -> IntentHandle:
        return IntentHandle(
            intent_id=intent["id"],
            status=intent["status"],
            client_secret=intent["client_secret"],
            failure_message=intent.get("failure_message"),
        )

    def _get(self, intent_id: str) -> dict:
        intent = self._intents.get(intent_id)
        if intent is None:
            raise ProcessorError(f"No such payment intent: {intent_id}")
        return intent

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        description: str = "",
        idempotency_key: Optional[str] = None,
    ) -> IntentHandle:
        if amount_cents <= 0:
            raise ProcessorError("Amount must be positive")
        with self._lock:
            if idempotency_key and idempotency_key in self._idempotency:
                return self._handle(self._intents[self._idempotency[idempotency_key]])

            intent_id = f"pi_mock_{uuid4().hex[:16]}"
            intent = {
                "id": intent_id,
                "status": "requires_confirmation",
                "client_secret": f"{intent_id}_secret_{uuid4().hex[:8]}",
                "amount": amount_cents,
                "currency": currency,
                "metadata": dict(metadata),
                "description": description,
                "capture_method": "manual",
            }
            self._intents[intent_id] = intent
            if idempotency_key:
                self._idempotency[idempotency_key] = intent_id
            return self._handle(intent)

    def retrieve_intent(self, intent_id: str) -> IntentHandle:
        with self._lock:
            return self._handle(self._get(intent_id))

    def capture_intent(self, intent_id: str) -> IntentHandle:
        with self._lock:
            intent = self._get(intent_id)
            if intent["status"] != "requires_capture":
                raise ProcessorError(
                    f"Intent {intent_id} cannot be captured from status {intent['status']}"
                )
            intent["status"] = "succeeded"
            return self._handle(intent)

    def cancel_intent(self, intent_id: str, reason: Optional[str] = None) -> IntentHandle:
        with self._lock:
            intent = self._get(intent_id)
            if intent["status"] in ("succeeded", "canceled"):
                raise ProcessorError(
                    f"Intent {intent_id} cannot be cancelled from status {intent['status']}"
                )
            intent["status"] = "canceled"
            intent["cancellation_reason"] = reason
            return self._handle(intent)

    # =========================================================================
    # Test helpers
    # =========================================================================

    def simulate_card(
        self,
        intent_id: str,
        status: str = "requires_capture",
        failure_message: Optional[str] = None,
    ) -> IntentHandle:
        """Play the payer's confirmation, leaving the intent in `status`."""
        with self._lock:
            intent = self._get(intent_id)
            intent["status"] = status
            intent["failure_message"] = failure_message
            return self._handle(intent)

    def metadata_for(self, intent_id: str) -> dict[str, str]:
        with self._lock:
            return dict(self._get(intent_id)["metadata"])
