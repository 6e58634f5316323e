from scan_gateway.models.ai_response_cache import AIResponseCache
from scan_gateway.models.ai_usage_metric import AIUsageMetric
from scan_gateway.models.ai_metrics_daily_rollup import AIMetricsDailyRollup
from scan_gateway.models.usage import AnonymousDailyUsage, ScanUsage, ApiRateLimit
from scan_gateway.models.user_subscription import UserSubscription
from scan_gateway.models.user_role import UserRole
from scan_gateway.models.access_token import AccessToken
from scan_gateway.models.admin_audit_log import AdminAuditLog
from scan_gateway.models.scan import Scan
from scan_gateway.models.shared_result import SharedResult
from scan_gateway.models.system_config import SystemConfig

__all__ = [
    "AIResponseCache",
    "AIUsageMetric",
    "AIMetricsDailyRollup",
    "AnonymousDailyUsage",
    "ScanUsage",
    "ApiRateLimit",
    "UserSubscription",
    "UserRole",
    "AccessToken",
    "AdminAuditLog",
    "Scan",
    "SharedResult",
    "SystemConfig",
]
