from sqlalchemy import Column, Integer, String, Date, DateTime, Float, UniqueConstraint
from sqlalchemy.sql import func
from scan_gateway.database import Base


class AIMetricsDailyRollup(Base):
    __tablename__ = "ai_metrics_daily_rollup"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    date = Column(Date, nullable=False, index=True)
    provider = Column(String, nullable=False)
    model = Column(String, nullable=False)
    operation = Column(String, nullable=False)
    total_requests = Column(Integer, nullable=False, default=0)
    cache_hits = Column(Integer, nullable=False, default=0)
    cache_misses = Column(Integer, nullable=False, default=0)
    hit_rate = Column(Float, nullable=True)  # 0.7523 = 75.23%
    avg_latency_ms = Column(Integer, nullable=True)
    p95_latency_ms = Column(Integer, nullable=True)
    p99_latency_ms = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=False, default=0)
    estimated_cost_usd = Column(Float, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('date', 'provider', 'model', 'operation', name='unique_daily_rollup'),
    )
