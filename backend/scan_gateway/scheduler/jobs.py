"""
Scheduled maintenance jobs. Each job opens its own session and never raises
into the scheduler.
"""
from loguru import logger

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal
from scan_gateway.services import maintenance
from scan_gateway.services.metrics_service import aggregate_daily_metrics
from scan_gateway.utils.runtime_config import get_config_value
from scan_gateway.utils.time_buckets import utc_now, yesterday


def _retention_days(key: str, default: int) -> int:
    """Retention window, overridable at runtime through system_config"""
    db = SessionLocal()
    try:
        return int(get_config_value(key, default, db))
    finally:
        db.close()


def aggregate_yesterday_metrics_job():
    """Roll up yesterday's raw metrics (runs shortly after midnight UTC)"""
    logger.info("Starting daily metrics aggregation job")
    try:
        rows = aggregate_daily_metrics(yesterday())
        logger.info(f"Daily metrics aggregation wrote {rows} rollup rows")
    except Exception as e:
        logger.error(f"Error in daily metrics aggregation job: {e}")


def refresh_today_metrics_job():
    """Refresh today's partial rollup so the dashboard is never a day behind"""
    try:
        aggregate_daily_metrics(utc_now().date())
    except Exception as e:
        logger.error(f"Error refreshing today's metrics rollup: {e}")


def cleanup_expired_cache_job():
    logger.info("Starting cache cleanup job")
    try:
        maintenance.cleanup_expired_cache()
    except Exception as e:
        logger.error(f"Error in cache cleanup job: {e}")


def cleanup_old_metrics_job():
    logger.info("Starting metrics cleanup job")
    try:
        retention_days = _retention_days('metrics_retention_days', settings.METRICS_RETENTION_DAYS)
        maintenance.cleanup_old_metrics(retention_days)
    except Exception as e:
        logger.error(f"Error in metrics cleanup job: {e}")


def cleanup_expired_shares_job():
    logger.info("Starting shared result cleanup job")
    try:
        maintenance.cleanup_expired_shares()
    except Exception as e:
        logger.error(f"Error in shared result cleanup job: {e}")


def delete_old_scans_job():
    logger.info("Starting scan cleanup job")
    try:
        retention_days = _retention_days('scan_retention_days', settings.SCAN_RETENTION_DAYS)
        maintenance.delete_old_scans(retention_days)
    except Exception as e:
        logger.error(f"Error in scan cleanup job: {e}")


def cleanup_usage_counters_job():
    logger.info("Starting usage counter cleanup job")
    try:
        retention_days = _retention_days('usage_counter_retention_days', settings.USAGE_COUNTER_RETENTION_DAYS)
        maintenance.cleanup_old_usage_counters(retention_days)
    except Exception as e:
        logger.error(f"Error in usage counter cleanup job: {e}")
