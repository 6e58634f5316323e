"""
Error taxonomy for the cache and quota layer.

Every error carries the HTTP status and machine code the API layer returns.
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for errors surfaced by the gateway"""
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class CacheUnavailable(GatewayError):
    """Cache storage read/write failed"""
    status_code = 503
    code = "CACHE_UNAVAILABLE"


class QuotaExceeded(GatewayError):
    """The identity has no units left in the current bucket"""
    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(self, message: str, code: str, decision=None):
        super().__init__(message, code)
        self.decision = decision


class QuotaLedgerUnavailable(GatewayError):
    """Usage counters could not be read or written (fail-closed policy only)"""
    status_code = 503
    code = "QUOTA_UNAVAILABLE"


class Unauthorized(GatewayError):
    status_code = 401
    code = "UNAUTHORIZED"


class AdminActionForbidden(GatewayError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidAdminRequest(GatewayError):
    status_code = 400
    code = "INVALID_REQUEST"


class AdminActionFailed(GatewayError):
    """An authorized admin action could not be completed"""
    status_code = 500
    code = "ADMIN_ACTION_FAILED"


class CacheMiss(GatewayError):
    """Cache-only request found no fresh entry"""
    status_code = 404
    code = "CACHE_MISS"
