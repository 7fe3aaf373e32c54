"""
Common utility functions for the order execution engine.
"""

import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any, Optional

from .exceptions import ValidationError
from .logging import get_logger

logger = get_logger(__name__)


def safe_decimal(value: Any, precision: int = 8) -> Optional[Decimal]:
    """
    Convert value to a fixed-precision Decimal.

    Args:
        value: Value to convert
        precision: Number of decimal places

    Returns:
        Decimal value, or None for missing values
    """
    if value is None or value == '':
        return None

    try:
        quantum = Decimal(1).scaleb(-precision)
        return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_EVEN)
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Failed to convert {value} to Decimal")
        return None


def get_utc_timestamp() -> int:
    """Get current UTC timestamp in milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def get_utc_datetime() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC for TIMESTAMP columns."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def from_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive datetime read back from a TIMESTAMP column."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as ISO-8601 UTC string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO-8601 datetime string.

    Args:
        value: Datetime string to parse

    Returns:
        Aware UTC datetime, or None
    """
    if value is None:
        return None
    try:
        return from_naive_utc(datetime.fromisoformat(value))
    except ValueError as e:
        raise ValidationError(f"Failed to parse datetime '{value}': {e}")


def calculate_percentage_change(old_value: float, new_value: float) -> float:
    """
    Calculate percentage change between two values.

    Args:
        old_value: Original value
        new_value: New value

    Returns:
        Percentage change
    """
    if old_value == 0:
        return 0.0

    return ((new_value - old_value) / old_value) * 100


def generate_id(prefix: str = "", length: int = 8) -> str:
    """
    Generate unique ID of the form ``<prefix>_<ms>_<hex>``.

    Args:
        prefix: Prefix for the ID
        length: Length of the random part

    Returns:
        Generated ID
    """
    timestamp = str(int(time.time() * 1000))
    random_part = uuid.uuid4().hex[:length]

    if prefix:
        return f"{prefix}_{timestamp}_{random_part}"
    return f"{timestamp}_{random_part}"
