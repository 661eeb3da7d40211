"""
DateTime utility functions.

Local rows keep naive UTC datetimes; LinkHub speaks epoch milliseconds.
"""
from datetime import datetime, timezone


def utcnow():
    """Naive UTC now, matching how rows are stamped."""
    return datetime.utcnow()


def to_epoch_ms(dt):
    """
    Convert a datetime to epoch milliseconds.

    Naive datetimes are assumed to be UTC. Returns None for None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value):
    """Convert epoch milliseconds to a naive UTC datetime, or None."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def format_datetime_utc(dt):
    """
    ISO-8601 string with a trailing Z for API responses.

    Args:
        dt: datetime object, or None

    Returns:
        str or None
    """
    if not dt:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat(timespec="milliseconds") + "Z"
