"""Number/currency formatting helpers."""

import math


def safe_number(value: object, default: float = 0.0) -> float:
    """Coerce to a finite float; None, NaN, inf and junk become ``default``."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def format_price(value: object) -> str:
    """Format a price with precision suited to its magnitude."""
    number = safe_number(value)
    if number == 0:
        return "$0.00"
    if abs(number) >= 1:
        return f"${number:,.2f}"
    return f"${number:.8f}".rstrip("0")


def format_percent(value: object, decimals: int = 2) -> str:
    """Format a number as a signed percentage."""
    number = safe_number(value)
    sign = "+" if number > 0 else ""
    return f"{sign}{number:.{decimals}f}%"


def format_large_number(value: object) -> str:
    """Format large numbers with K/M/B/T suffixes."""
    number = safe_number(value)
    if abs(number) >= 1_000_000_000_000:
        return f"{number / 1_000_000_000_000:.1f}T"
    if abs(number) >= 1_000_000_000:
        return f"{number / 1_000_000_000:.1f}B"
    if abs(number) >= 1_000_000:
        return f"{number / 1_000_000:.1f}M"
    if abs(number) >= 1_000:
        return f"{number / 1_000:.1f}K"
    return f"{number:.0f}"


def truncate(text: str, max_length: int = 160) -> str:
    """Truncate text to max_length, adding ellipsis if needed."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def mask_user_id(user_id: str) -> str:
    """Shorten a recipient id for logs."""
    if len(user_id) <= 8:
        return user_id
    return user_id[:8] + "..."
