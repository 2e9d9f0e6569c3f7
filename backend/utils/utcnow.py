"""UTC helpers shared by the scheduler, the tenant store and the API.

``datetime.utcnow()`` is deprecated since Python 3.12.  These wrappers return
the **naive** UTC datetimes stored in the database, and derive the day bucket
string that scopes per-tenant daily counters.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_bucket(value: datetime) -> str:
    """Calendar-day key (``YYYY-MM-DD``, UTC) for daily counters."""
    return as_naive_utc(value).date().isoformat()


def day_start(value: datetime) -> datetime:
    return as_naive_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_naive_utc(value).isoformat() + "Z"
