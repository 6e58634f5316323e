from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func
from scan_gateway.database import Base


class AnonymousDailyUsage(Base):
    """Scans used by an anonymous IP address on one UTC day"""
    __tablename__ = "anonymous_daily_usage"

    ip_address = Column(String, primary_key=True)
    date = Column(String, primary_key=True, index=True)  # YYYY-MM-DD (UTC)
    scans_used = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("scans_used >= 0", name='check_anonymous_scans_used'),
    )


class ScanUsage(Base):
    """Scans used by an authenticated user in one calendar month"""
    __tablename__ = "scan_usage"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    month_year = Column(String, nullable=False)  # YYYY-MM
    scans_used = Column(Integer, nullable=False, default=0)
    additional_scans_purchased = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'month_year', name='unique_scan_usage_month'),
        CheckConstraint("scans_used >= 0", name='check_scans_used'),
        CheckConstraint("additional_scans_purchased >= 0", name='check_additional_scans'),
    )


class ApiRateLimit(Base):
    """Requests made by an authenticated user within one clock hour"""
    __tablename__ = "api_rate_limits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    hour_timestamp = Column(DateTime, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('user_id', 'hour_timestamp', name='unique_rate_limit_hour'),
        CheckConstraint("request_count >= 0", name='check_request_count'),
    )
