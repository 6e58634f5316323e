from sqlalchemy import Column, Integer, String, DateTime, Text, CheckConstraint, Index
from sqlalchemy.sql import func
from scan_gateway.database import Base


class AIResponseCache(Base):
    __tablename__ = "ai_response_cache"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    content_hash = Column(String, nullable=False, unique=True, index=True)
    prompt_template_id = Column(String, nullable=False)
    prompt_version = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    model = Column(String, nullable=False, index=True)
    response_json = Column(Text, nullable=False)
    tokens_used = Column(Integer, nullable=True)
    latency_ms = Column(Integer, nullable=False, default=0)
    hit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now(), index=True)
    last_accessed_at = Column(DateTime, server_default=func.now())
    expires_at = Column(DateTime, nullable=True, index=True)  # NULL = kept until flushed

    __table_args__ = (
        CheckConstraint("hit_count >= 0", name='check_cache_hit_count'),
        CheckConstraint("latency_ms >= 0", name='check_cache_latency'),
        Index('idx_cache_prompt_version', 'prompt_template_id', 'prompt_version'),
    )
