"""
Money helpers.

All amounts are Decimal. Rounding is half-up to cents and happens only where
the engine says it does (total amount, commission), never per night.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Final, Optional


CENT: Final[Decimal] = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    """Round to two decimal places using round-half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Any) -> Optional[Decimal]:
    """
    Parse an untrusted amount into a Decimal.

    Floats go through str() so 70.1 becomes Decimal("70.1") and not its
    binary expansion. Returns None for anything that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def to_cents(amount: Decimal) -> int:
    """Convert a major-unit amount to integer minor units."""
    return int(round2(amount) * 100)


def money_str(amount: Optional[Decimal]) -> Optional[str]:
    """Serialise a money amount (stored as string to keep exactness)."""
    if amount is None:
        return None
    return str(amount)


def parse_money(value: Optional[str]) -> Optional[Decimal]:
    """Inverse of money_str."""
    if value is None:
        return None
    return Decimal(value)
