"""
Formatting utilities.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union


def format_currency(amount: Optional[Union[Decimal, int]], currency: str = "USD") -> str:
    """
    Format a money amount for display.

    Args:
        amount: The amount in major units (e.g., dollars, not cents).
        currency: Currency code (default USD).

    Returns:
        Formatted currency string, or "-" when amount is None.
    """
    if amount is None:
        return "-"
    symbols = {
        "GBP": "£",
        "USD": "$",
        "EUR": "€",
    }
    symbol = symbols.get(currency.upper(), currency.upper() + " ")
    value = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{symbol}{value:,}"


def format_percent(value: Union[Decimal, float], decimals: int = 2) -> str:
    """
    Format a number as a percentage.

    Args:
        value: The percentage value (6.66, not 0.0666).
        decimals: Number of decimal places.

    Returns:
        Formatted percentage string.
    """
    return f"{value:.{decimals}f}%"
