"""
Utility functions for timestamps and money values.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Render a stored (naive UTC) datetime as ISO-8601 with an explicit UTC offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (trailing 'Z' allowed) or epoch seconds into
    a naive UTC datetime. Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def epoch_to_iso(seconds: Any) -> Optional[str]:
    """Epoch seconds to an ISO-8601 string with millisecond precision and a 'Z' suffix."""
    if seconds is None or seconds == "":
        return None
    dt = datetime.fromtimestamp(float(seconds), tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def format_price(value: Any) -> str:
    """
    Canonical text form of a price: no exponent, no trailing zeros
    (25.00 -> '25', 25.50 -> '25.5'). Empty string when there is no price.
    """
    amount = to_decimal(value)
    if amount is None:
        return ""
    normalized = amount.normalize()
    text = format(normalized, "f")
    return "0" if text in ("-0", "") else text


def new_id() -> str:
    """New opaque identifier (UUID4 string) for jobs, events and audit rows."""
    return str(uuid.uuid4())
