from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Literal, Optional
from datetime import datetime


CacheControlAction = Literal['flush_all', 'invalidate_by_prompt', 'invalidate_by_model', 'invalidate_by_key']


class CacheControlRequest(BaseModel):
    """Schema for an admin cache control action"""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    action: CacheControlAction
    prompt_template_id: Optional[str] = Field(None, alias='promptTemplateId', max_length=100)
    prompt_version: Optional[str] = Field(None, alias='promptVersion', max_length=20)
    model: Optional[str] = Field(None, max_length=100)
    cache_key: Optional[str] = Field(None, alias='cacheKey', max_length=500)

    @field_validator('prompt_template_id', 'prompt_version', 'model', 'cache_key')
    @classmethod
    def strip_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class CacheControlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    deleted_count: Optional[int] = Field(None, alias='deletedCount')
    deleted: Optional[bool] = None


class AuditLogEntry(BaseModel):
    """Schema for an admin audit log row"""
    id: int
    user_id: Optional[str] = None
    action: str
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AggregateMetricsRequest(BaseModel):
    date: Optional[str] = None  # YYYY-MM-DD, yesterday when omitted
