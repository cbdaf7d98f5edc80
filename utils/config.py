"""
Configuration management.
"""

import os
import secrets
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional


def _payout_methods_from_env() -> tuple:
    raw = os.getenv("PAYOUT_METHODS", "bank_transfer,manual,other")
    return tuple(m.strip().lower() for m in raw.split(",") if m.strip())


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # Bidding
    commission_rate: Decimal = field(
        default_factory=lambda: Decimal(os.getenv("PLATFORM_COMMISSION_RATE", "0.0666"))
    )
    bid_window_days: int = field(default_factory=lambda: int(os.getenv("BID_WINDOW_DAYS", "30")))
    payout_methods: tuple = field(default_factory=_payout_methods_from_env)

    # Card processing
    currency: str = field(default_factory=lambda: os.getenv("PAYMENT_CURRENCY", "usd").lower())
    auth_expiry_days: int = field(
        default_factory=lambda: int(os.getenv("PAYMENT_AUTH_EXPIRY_DAYS", "6"))
    )
    processor_type: str = field(default_factory=lambda: os.getenv("PROCESSOR_TYPE", "mock"))
    processor_api_key: Optional[str] = field(default_factory=lambda: os.getenv("PROCESSOR_API_KEY"))
    webhook_secret: Optional[str] = field(
        default_factory=lambda: os.getenv("PROCESSOR_WEBHOOK_SECRET")
    )
    request_timeout: int = field(default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30")))

    # Sessions
    session_secret: str = field(
        default_factory=lambda: os.getenv("SESSION_SECRET") or secrets.token_hex(32)
    )

    # Data
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))

    def __post_init__(self):
        """Validate configuration values."""
        try:
            self.commission_rate = Decimal(str(self.commission_rate))
        except InvalidOperation:
            raise ValueError(f"Invalid commission rate: {self.commission_rate}")
        if not self.commission_rate.is_finite() or not (0 <= self.commission_rate < 1):
            raise ValueError("commission_rate must be a fraction in [0, 1)")
        if self.bid_window_days < 0:
            raise ValueError("bid_window_days must be non-negative")
        if not self.payout_methods:
            raise ValueError("At least one payout method must be configured")
        if self.auth_expiry_days < 1:
            raise ValueError("auth_expiry_days must be at least 1")

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def to_dict(self) -> dict:
        """Convert config to dictionary (secrets excluded)."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "log_level": self.log_level,
            "commission_rate": str(self.commission_rate),
            "bid_window_days": self.bid_window_days,
            "payout_methods": list(self.payout_methods),
            "currency": self.currency,
            "auth_expiry_days": self.auth_expiry_days,
            "processor_type": self.processor_type,
            "request_timeout": self.request_timeout,
            "data_dir": self.data_dir,
        }
