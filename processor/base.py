"""
Base card processor interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class IntentHandle:
    """
    Processor-side view of a payment intent.

    `status` is the processor's own status string (e.g. "requires_capture");
    mapping it onto PaymentStatus is the engine's job.
    """

    intent_id: str
    status: str
    client_secret: Optional[str] = None
    failure_message: Optional[str] = None


class CardProcessor(ABC):
    """Abstract base class for card processors (authorise, capture, release)."""

    @abstractmethod
    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        description: str = "",
        idempotency_key: Optional[str] = None,
    ) -> IntentHandle:
        """
        Create a manual-capture payment intent.

        Args:
            amount_cents: Amount in the currency's minor unit.
            currency: Lower-case ISO currency code.
            metadata: Identifiers echoed back on webhooks.
            description: Statement description.
            idempotency_key: Key making retries safe on the processor side.

        Returns:
            IntentHandle carrying the client secret for the payer.
        """
        pass

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> IntentHandle:
        """Read the current state of an intent."""
        pass

    @abstractmethod
    def capture_intent(self, intent_id: str) -> IntentHandle:
        """Capture held funds on an authorised intent."""
        pass

    @abstractmethod
    def cancel_intent(self, intent_id: str, reason: Optional[str] = None) -> IntentHandle:
        """Release held funds and cancel the intent."""
        pass

    def close(self) -> None:
        """Release any transport resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
