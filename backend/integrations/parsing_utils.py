"""Shared parsing utilities for Open Finance API payloads.

Centralises the date/time and amount parsing the API clients need:
ISO 8601 strings in the several shapes institutions emit, and amounts
sent either as numbers or as ``{"amount": "12.34", "currency": "BRL"}``
objects.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation


def parse_iso_datetime(value) -> datetime | None:
    """Parse an ISO 8601 string (or date/datetime object) to a naive UTC datetime.

    Handles:
    - Z suffix ("2024-01-15T10:30:00Z")
    - +0000 no-colon offset ("2024-01-15T10:30:00+0000")
    - Standard ISO with colon offset ("2024-06-28 18:42:46-03:00")
    - Date-only strings ("2024-06-28")
    - datetime/date objects passed through with UTC normalisation

    Returns:
        A naive datetime in UTC, or None if the value cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    value_str = str(value).strip()

    # Handle Z suffix: "2024-01-15T10:30:00Z" -> "2024-01-15T10:30:00+00:00"
    if value_str.endswith("Z"):
        value_str = value_str[:-1] + "+00:00"

    # Handle "+0000" no-colon tz: "...+0000" -> "...+00:00"
    if (
        len(value_str) >= 5
        and value_str[-5] in ("+", "-")
        and value_str[-4:].isdigit()
        and "T" in value_str
    ):
        value_str = value_str[:-2] + ":" + value_str[-2:]

    try:
        return _to_naive_utc(datetime.fromisoformat(value_str))
    except (ValueError, TypeError):
        pass

    try:
        d = date.fromisoformat(str(value).strip())
        return datetime(d.year, d.month, d.day)
    except (ValueError, TypeError):
        return None


def parse_amount(value) -> Decimal | None:
    """Parse a monetary amount from a number, string or amount object.

    Returns:
        The Decimal amount, or None when absent or unparseable.
    """
    if isinstance(value, dict):
        value = value.get("amount")
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def format_iso_datetime(dt: datetime) -> str:
    """Format a datetime as ISO 8601 with an explicit UTC offset."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
