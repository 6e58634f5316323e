"""
UTC clock and usage-counter bucket keys.

Datetimes are stored naive and always in UTC.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current UTC time as a naive datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(moment: Optional[datetime]) -> datetime:
    """Coerce an optional (possibly aware) datetime to naive UTC"""
    if moment is None:
        return utc_now()
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def day_bucket(now: Optional[datetime] = None) -> str:
    """UTC day, e.g. '2025-01-17'"""
    return as_utc(now).strftime('%Y-%m-%d')


def month_bucket(now: Optional[datetime] = None) -> str:
    """Calendar month, e.g. '2025-01'"""
    return as_utc(now).strftime('%Y-%m')


def hour_bucket(now: Optional[datetime] = None) -> datetime:
    """Start of the current clock hour"""
    return as_utc(now).replace(minute=0, second=0, microsecond=0)


def yesterday(now: Optional[datetime] = None) -> date:
    return (as_utc(now) - timedelta(days=1)).date()
