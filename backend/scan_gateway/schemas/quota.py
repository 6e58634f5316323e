from pydantic import BaseModel
from typing import Optional


class QuotaStatusResponse(BaseModel):
    """Schema for a user's monthly scan quota"""
    can_scan: bool
    scans_used: int
    scans_limit: int
    additional_scans: int
    total_limit: int
    remaining: int
    usage_percent: int
    warning: bool
    tier: Optional[str] = None
    degraded: bool = False


class AnonymousQuotaResponse(BaseModel):
    """Schema for an anonymous caller's daily quota"""
    can_scan: bool
    scans_used: int
    scans_limit: int
    remaining: int
    usage_percent: int
    warning: bool
    degraded: bool = False
