"""Timestamp helpers for storage and source API formats.

Storage keeps timezone-aware UTC datetimes. The Shopify search syntax wants
second precision with an explicit offset in the store's own timezone, and
that offset changes across daylight-saving transitions, so it is computed
per instant rather than hard-coded.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 string (``Z`` suffix allowed) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def format_source_timestamp(value: datetime, tz_name: str) -> str:
    """Render a datetime for Shopify query filters.

    Example: ``2025-05-03T19:29:51-04:00`` for America/New_York in summer,
    ``2025-01-03T18:29:51-05:00`` in winter.
    """
    local = ensure_utc(value).astimezone(ZoneInfo(tz_name))
    return local.replace(microsecond=0).isoformat()


def format_iso_with_offset(value: datetime) -> str:
    """Render a datetime as ``2025-05-03T23:29:51.082+00:00``."""
    return ensure_utc(value).isoformat(timespec="milliseconds")
