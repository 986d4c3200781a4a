"""Response formatting helpers."""

from datetime import datetime
from decimal import Decimal


def format_utc_datetime(dt: datetime | None) -> str | None:
    """Format datetime to ISO string with Z suffix for UTC.

    Timestamps are stored as naive UTC (``datetime.utcnow()``) and
    ``isoformat()`` adds no zone, so the Z suffix marks them as UTC for clients.

    Args:
        dt: datetime object (assumed UTC) or None

    Returns:
        ISO format string with Z suffix (e.g., "2026-01-10T10:30:00Z") or None
    """
    if dt is None:
        return None
    return f"{dt.isoformat()}Z"


def format_amount(value: Decimal | None, places: int = 4) -> str | None:
    """Render a money value with fixed decimal places (e.g. '1.0000')."""
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal(1).scaleb(-places)))
