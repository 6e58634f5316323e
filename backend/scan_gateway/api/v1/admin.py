from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional
from datetime import date, timedelta
import json

from scan_gateway.api.deps import get_admin_control, get_current_user_id, get_session_factory
from scan_gateway.errors import AdminActionFailed, InvalidAdminRequest
from scan_gateway.schemas import (
    AggregateMetricsRequest,
    AuditLogEntry,
    CacheControlRequest,
    CacheControlResponse,
    CacheStatsResponse,
    DailyRollupResponse,
)
from scan_gateway.services.admin_control import AdminCacheControl, list_audit_log
from scan_gateway.services.metrics_service import aggregate_daily_metrics, get_daily_rollups
from scan_gateway.utils.request import get_client_ip
from scan_gateway.utils.time_buckets import utc_now, yesterday

router = APIRouter(prefix="/admin", tags=["admin"])


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"Invalid {location}: {first['msg']}" if location else first['msg']


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidAdminRequest("Invalid request body")
    if not isinstance(body, dict):
        raise InvalidAdminRequest("Invalid request body")
    return body


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidAdminRequest(f"{name} must be a date (YYYY-MM-DD)")


@router.post("/cache-control", response_model=CacheControlResponse, response_model_exclude_none=True)
async def cache_control(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    admin: AdminCacheControl = Depends(get_admin_control)
):
    """Flush or invalidate response cache entries (admin only, audited)"""
    body = await _read_json(request)
    try:
        control_request = CacheControlRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidAdminRequest(_validation_message(e))

    return await run_in_threadpool(
        admin.execute,
        user_id,
        control_request,
        get_client_ip(request),
        request.headers.get("user-agent")
    )


@router.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats(
    user_id: str = Depends(get_current_user_id),
    admin: AdminCacheControl = Depends(get_admin_control)
):
    """Response cache size, expiry backlog and per-model hit counts"""
    admin.require_admin(user_id)
    return admin.cache.stats()


@router.get("/metrics/daily", response_model=list[DailyRollupResponse])
def daily_metrics(
    start: Optional[str] = Query(None, description="First day (YYYY-MM-DD), 30 days ago by default"),
    end: Optional[str] = Query(None, description="Last day (YYYY-MM-DD), today by default"),
    model: Optional[str] = Query(None, max_length=100),
    user_id: str = Depends(get_current_user_id),
    admin: AdminCacheControl = Depends(get_admin_control),
    session_factory=Depends(get_session_factory)
):
    """Aggregated AI usage per day, provider, model and operation"""
    admin.require_admin(user_id)

    end_date = _parse_date(end, "end") if end else utc_now().date()
    start_date = _parse_date(start, "start") if start else end_date - timedelta(days=30)
    if start_date > end_date:
        raise InvalidAdminRequest("start must not be after end")

    try:
        return get_daily_rollups(start_date, end_date, model, session_factory=session_factory)
    except SQLAlchemyError as e:
        raise AdminActionFailed(f"Could not load daily metrics: {e}") from e


@router.post("/metrics/aggregate")
async def aggregate_metrics(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    admin: AdminCacheControl = Depends(get_admin_control),
    session_factory=Depends(get_session_factory)
):
    """Re-run the daily rollup for one date (yesterday by default)"""
    await run_in_threadpool(admin.require_admin, user_id)

    raw = await request.body()
    body = await _read_json(request) if raw.strip() else {}
    try:
        aggregate_request = AggregateMetricsRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidAdminRequest(_validation_message(e))

    target_date = _parse_date(aggregate_request.date, "date") if aggregate_request.date else None
    try:
        rows = await run_in_threadpool(aggregate_daily_metrics, target_date, session_factory)
    except SQLAlchemyError as e:
        raise AdminActionFailed(f"Daily metrics aggregation failed: {e}") from e

    return {
        "success": True,
        "date": (target_date or yesterday()).isoformat(),
        "rollupRows": rows,
    }


@router.get("/audit-log", response_model=list[AuditLogEntry])
def audit_log(
    limit: int = Query(100, ge=1, le=1000),
    user_id: str = Depends(get_current_user_id),
    admin: AdminCacheControl = Depends(get_admin_control),
    session_factory=Depends(get_session_factory)
):
    """Most recent admin actions"""
    admin.require_admin(user_id)
    try:
        return list_audit_log(limit, session_factory=session_factory)
    except SQLAlchemyError as e:
        raise AdminActionFailed(f"Could not load audit log: {e}") from e
