"""Timezone helpers."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def hour_bucket(value: datetime) -> str:
    """Format a timestamp as its UTC hour, e.g. ``2025-01-06T14``."""
    return ensure_aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H")
