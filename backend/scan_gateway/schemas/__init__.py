from scan_gateway.schemas.common import ErrorResponse, HealthCheckResponse
from scan_gateway.schemas.admin import (
    CacheControlRequest,
    CacheControlResponse,
    AuditLogEntry,
    AggregateMetricsRequest,
)
from scan_gateway.schemas.quota import QuotaStatusResponse, AnonymousQuotaResponse
from scan_gateway.schemas.metrics import DailyRollupResponse, ModelCacheStats, CacheStatsResponse

__all__ = [
    # Common
    "ErrorResponse",
    "HealthCheckResponse",
    # Admin
    "CacheControlRequest",
    "CacheControlResponse",
    "AuditLogEntry",
    "AggregateMetricsRequest",
    # Quota
    "QuotaStatusResponse",
    "AnonymousQuotaResponse",
    # Metrics
    "DailyRollupResponse",
    "ModelCacheStats",
    "CacheStatsResponse",
]
