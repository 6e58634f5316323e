from scan_gateway.services.cache_service import cache_service
from scan_gateway.services.quota_service import quota_ledger

__all__ = [
    "cache_service",
    "quota_ledger",
]
