import datetime
from typing import Optional


def from_unix_timestamp(unix_seconds: Optional[int]) -> Optional[datetime.datetime]:
    """Convert Stripe's Unix seconds to an aware UTC datetime. 0 and None mean unset."""
    if not unix_seconds:
        return None
    return datetime.datetime.fromtimestamp(int(unix_seconds), tz=datetime.timezone.utc)


def to_iso(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite hands back naive values; everything is stored as UTC
        value = value.replace(tzinfo=datetime.timezone.utc)
    value = value.astimezone(datetime.timezone.utc)
    return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def to_iso_from_unix(unix_seconds: Optional[int]) -> Optional[str]:
    return to_iso(from_unix_timestamp(unix_seconds))


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
