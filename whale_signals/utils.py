"""
Utility functions for Whale Signals.

This module provides helper functions for common operations
like data formatting, validation, and conversions.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Safely convert a value to float.

    Args:
        value: Value to convert.
        default: Default value if conversion fails.

    Returns:
        Float value or default. NaN and infinities also yield the default.
    """
    if value is None:
        return default
    try:
        result = float(value)
    except (ValueError, TypeError):
        return default
    if result != result or result in (float("inf"), float("-inf")):
        return default
    return result


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(
    value: Union[str, int, float, datetime, None],
    default: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Parse various timestamp formats to an aware UTC datetime.

    Handles:
    - datetime objects (naive values are taken as UTC)
    - ISO format strings
    - Unix timestamps (seconds or milliseconds), also as numeric strings

    Args:
        value: Timestamp value to parse.
        default: Default value if parsing fails.

    Returns:
        Parsed datetime or default.
    """
    if value is None or value == "":
        return default

    if isinstance(value, datetime):
        return ensure_utc(value)

    try:
        if isinstance(value, str):
            stripped = value.strip()
            try:
                value = float(stripped)
            except ValueError:
                # Handle various ISO formats
                return ensure_utc(datetime.fromisoformat(stripped.replace("Z", "+00:00")))

        ts = float(value)
        if ts > 1e12:  # Milliseconds
            ts = ts / 1000
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    except (ValueError, TypeError, OSError, OverflowError):
        return default


def normalize_address(address: Optional[str]) -> str:
    """Lower-case and strip a wallet address; None becomes ""."""
    if not address:
        return ""
    return address.strip().lower()


def truncate_address(address: str, length: int = 6) -> str:
    """
    Truncate a wallet address for display.

    Args:
        address: Full wallet address.
        length: Number of characters to show on each side.

    Returns:
        Truncated address like "0x1234...abcd".
    """
    if not address or len(address) <= length * 2 + 3:
        return address
    return f"{address[:length]}...{address[-length:]}"


def format_volume(volume: float) -> str:
    """
    Format trading volume for display.

    Args:
        volume: Volume in dollars.

    Returns:
        Formatted string like "$1.23M" or "$123.45K".
    """
    if volume >= 1_000_000:
        return f"${volume / 1_000_000:.2f}M"
    elif volume >= 1_000:
        return f"${volume / 1_000:.2f}K"
    else:
        return f"${volume:.2f}"
