"""
Retention cleanups run by the scheduler. Each returns the number of rows
removed and is safe to run repeatedly.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal
from scan_gateway.models import AIUsageMetric, AnonymousDailyUsage, ApiRateLimit, Scan, SharedResult
from scan_gateway.services.cache_service import CacheService
from scan_gateway.utils.time_buckets import as_utc, day_bucket


def _delete_where(session_factory: Callable[[], Session], model, description: str, *criteria) -> int:
    db = session_factory()
    try:
        deleted = db.query(model).filter(*criteria).delete(synchronize_session=False)
        db.commit()
        logger.info(f"{description}: deleted {deleted} rows")
        return deleted
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def cleanup_expired_cache(
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    return CacheService(session_factory=session_factory).sweep_expired(now)


def cleanup_old_metrics(
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    """Delete raw usage metrics older than the retention window (rollups are kept)"""
    retention_days = settings.METRICS_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = as_utc(now) - timedelta(days=retention_days)
    return _delete_where(
        session_factory, AIUsageMetric,
        f"Metrics cleanup (older than {retention_days} days)",
        AIUsageMetric.timestamp < cutoff
    )


def cleanup_expired_shares(
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    now = as_utc(now)
    return _delete_where(
        session_factory, SharedResult,
        "Expired shares cleanup",
        SharedResult.expires_at.isnot(None),
        SharedResult.expires_at < now
    )


def delete_old_scans(
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    retention_days = settings.SCAN_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = as_utc(now) - timedelta(days=retention_days)
    return _delete_where(
        session_factory, Scan,
        f"Scan cleanup (older than {retention_days} days)",
        Scan.created_at < cutoff
    )


def cleanup_old_usage_counters(
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    """
    Delete anonymous daily and hourly rate-limit counters past retention

    Monthly subscription counters are kept for billing history.
    """
    retention_days = settings.USAGE_COUNTER_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = as_utc(now) - timedelta(days=retention_days)

    anonymous = _delete_where(
        session_factory, AnonymousDailyUsage,
        "Anonymous usage cleanup",
        AnonymousDailyUsage.date < day_bucket(cutoff)
    )
    hourly = _delete_where(
        session_factory, ApiRateLimit,
        "Hourly rate limit cleanup",
        ApiRateLimit.hour_timestamp < cutoff
    )
    return anonymous + hourly
