from pydantic import BaseModel, ConfigDict
from typing import Optional
import datetime


class DailyRollupResponse(BaseModel):
    """Schema for one day of aggregated AI metrics"""
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    date: datetime.date
    provider: str
    model: str
    operation: str
    total_requests: int
    cache_hits: int
    cache_misses: int
    hit_rate: Optional[float] = None
    avg_latency_ms: Optional[int] = None
    p95_latency_ms: Optional[int] = None
    p99_latency_ms: Optional[int] = None
    total_tokens: int
    estimated_cost_usd: Optional[float] = None


class ModelCacheStats(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    provider: str
    model: str
    entries: int
    hits: int


class CacheStatsResponse(BaseModel):
    """Schema for response cache statistics"""
    total_entries: int
    fresh_entries: int
    expired_entries: int
    total_hits: int
    by_model: list[ModelCacheStats]
