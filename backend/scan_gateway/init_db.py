"""
Database initialization script
Creates all tables, inserts default runtime configuration and grants the
bootstrap admin role
"""
from loguru import logger
from typing import Callable, Optional
from sqlalchemy.orm import Session

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal, init_db
from scan_gateway.models import SystemConfig
from scan_gateway.services.admin_control import grant_role
from scan_gateway.utils.runtime_config import set_config_value


DEFAULT_CONFIGS = [
    ('metrics_retention_days', settings.METRICS_RETENTION_DAYS, 'integer',
     'Days to keep raw AI usage metrics (daily rollups are kept)'),
    ('scan_retention_days', settings.SCAN_RETENTION_DAYS, 'integer',
     'Days to keep scan history'),
    ('usage_counter_retention_days', settings.USAGE_COUNTER_RETENTION_DAYS, 'integer',
     'Days to keep anonymous daily and hourly rate limit counters'),
]


def seed_default_config(session_factory: Callable[[], Session] = SessionLocal) -> int:
    """
    Insert runtime configuration defaults that are not set yet

    Returns:
        Number of keys inserted
    """
    db = session_factory()
    try:
        existing = {row.key for row in db.query(SystemConfig.key).all()}
        inserted = 0
        for key, value, data_type, description in DEFAULT_CONFIGS:
            if key in existing:
                continue
            set_config_value(key, value, data_type, db, description=description)
            inserted += 1

        if inserted:
            logger.info(f"Inserted {inserted} default configuration values")
        return inserted
    finally:
        db.close()


def bootstrap_admin(
    user_id: Optional[str] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> bool:
    """Grant the admin role to the configured bootstrap user"""
    user_id = user_id or settings.BOOTSTRAP_ADMIN_USER_ID
    if not user_id:
        return False
    return grant_role(user_id, 'admin', session_factory)


def init_database():
    """Initialize database with tables, default config and bootstrap admin"""
    logger.info("Creating database tables...")
    init_db()
    logger.info("Database tables created successfully")

    seed_default_config()
    bootstrap_admin()


if __name__ == "__main__":
    init_database()
