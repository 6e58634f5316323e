from pydantic import BaseModel
from typing import Optional


class ErrorResponse(BaseModel):
    """Body returned for every gateway error"""
    success: bool = False
    error: str
    code: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Schema for health check response"""
    status: str
    timestamp: str
    database: str
    scheduler: str
