"""
Data formatting utilities.
"""

from typing import Union, Optional
from datetime import datetime, timezone
from decimal import Decimal


def format_token_amount(value: Union[str, int], decimals: int = 18, precision: int = 6) -> str:
    """
    Format a fixed-point integer token amount without going through float.

    Args:
        value: Raw integer amount
        decimals: Token decimals
        precision: Fractional digits to keep (truncated, not rounded)

    Returns:
        Formatted amount, e.g. "1000.500000"
    """
    try:
        value = int(value)
    except (ValueError, TypeError):
        return "0." + "0" * precision

    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10 ** decimals)
    fraction_str = str(fraction).zfill(decimals)[:precision].ljust(precision, "0")
    if precision == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction_str}"


def format_percentage(
    value: Union[str, int, float, Decimal],
    decimals: int = 2
) -> str:
    """
    Format value as percentage.

    Args:
        value: Numeric value (already in percentage, not decimal)
        decimals: Number of decimal places

    Returns:
        Formatted percentage string
    """
    try:
        if isinstance(value, str):
            value = float(value)
        elif isinstance(value, Decimal):
            value = float(value)

        return f"{value:.{decimals}f}%"
    except (ValueError, TypeError):
        return "0.00%"


def format_decimal(value: Union[Decimal, float], decimals: int = 2) -> str:
    try:
        return f"{Decimal(str(value)):.{decimals}f}"
    except (ValueError, TypeError, ArithmeticError):
        return "0"


def format_timestamp(
    timestamp: Union[str, int, float],
    format_str: str = "%Y-%m-%d %H:%M:%S UTC"
) -> str:
    """
    Format Unix timestamp for display, in UTC.

    Args:
        timestamp: Unix timestamp (seconds)
        format_str: strftime format string

    Returns:
        Formatted datetime string
    """
    try:
        if isinstance(timestamp, str):
            timestamp = int(timestamp)

        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return dt.strftime(format_str)
    except (ValueError, TypeError, OSError, OverflowError):
        return ""


def explorer_url(address: str, base_url: Optional[str] = None) -> str:
    """Block explorer link for an address."""
    base = (base_url or "https://arbiscan.io").rstrip("/")
    return f"{base}/address/{address}"
