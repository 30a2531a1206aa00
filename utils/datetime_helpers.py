from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """ISO 8601 in UTC with a Z suffix; naive datetimes are taken as UTC."""
    if dt is None:
        return None

    iso_string = ensure_utc(dt).isoformat()

    if iso_string.endswith('+00:00'):
        return iso_string.replace('+00:00', 'Z')

    return iso_string


def month_bucket(dt: datetime) -> str:
    """Reporting bucket for a timestamp, formatted YYYY-MM (UTC)."""
    return ensure_utc(dt).strftime("%Y-%m")
