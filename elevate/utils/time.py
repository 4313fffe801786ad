"""
Time utilities. Timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time without tzinfo, as stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(seconds: int) -> datetime:
    """Convert a unix timestamp (seconds) to a naive UTC datetime."""
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc).replace(tzinfo=None)


def date_slug(moment: datetime) -> str:
    """Format a UTC moment as `YYYYMMDD`."""
    return moment.strftime("%Y%m%d")
