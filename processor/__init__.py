"""
Card processor adapters.
"""

from processor.base import CardProcessor, IntentHandle
from processor.mock import MockCardProcessor
from processor.stripe import StripeCardProcessor
from processor.webhooks import (
    WebhookSignatureError,
    construct_event,
    signature_header,
)


def build_processor(config) -> CardProcessor:
    """Create the processor selected by `config.processor_type`."""
    if config.processor_type == "stripe":
        return StripeCardProcessor(
            api_key=config.processor_api_key,
            timeout=config.request_timeout,
        )
    return MockCardProcessor()


__all__ = [
    "CardProcessor",
    "IntentHandle",
    "MockCardProcessor",
    "StripeCardProcessor",
    "WebhookSignatureError",
    "build_processor",
    "construct_event",
    "signature_header",
]
