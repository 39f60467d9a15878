from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_iso_utc(value: datetime) -> str:
    """Serialize a datetime as timezone-qualified ISO-8601 (UTC, second precision)."""
    return as_utc(value).replace(microsecond=0).isoformat()


def parse_iso_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 wire timestamp; returns None for empty or bad input."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None
