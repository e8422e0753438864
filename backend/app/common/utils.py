from datetime import datetime, timezone


def from_millis(value: float | int | None) -> datetime | None:
    """Convert a store timestamp (Unix milliseconds) to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_millis(value: datetime) -> int:
    return round(ensure_utc(value).timestamp() * 1000)


def ensure_utc(value: datetime) -> datetime:
    # Naive datetimes coming from query strings are treated as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_start(value: datetime) -> datetime:
    value = ensure_utc(value)
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
