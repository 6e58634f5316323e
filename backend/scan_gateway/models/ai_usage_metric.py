from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, CheckConstraint, Index
from sqlalchemy.sql import func
from scan_gateway.database import Base


class AIUsageMetric(Base):
    """Raw per-call record, compacted nightly into AIMetricsDailyRollup"""
    __tablename__ = "ai_usage_metrics"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    provider = Column(String, nullable=False)
    model = Column(String, nullable=False)
    operation = Column(String, nullable=False)
    latency_ms = Column(Integer, nullable=False)
    tokens_used = Column(Integer, nullable=True)
    cache_hit = Column(Boolean, nullable=False, default=False)
    cache_key_hash = Column(String, nullable=True)
    estimated_cost_usd = Column(Float, nullable=True)

    __table_args__ = (
        CheckConstraint("latency_ms >= 0", name='check_metric_latency'),
        Index('idx_metrics_provider_model_op', 'provider', 'model', 'operation', 'timestamp'),
    )
