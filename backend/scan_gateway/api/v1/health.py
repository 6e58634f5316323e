from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from scan_gateway.api.deps import get_session_factory
from scan_gateway.schemas import HealthCheckResponse
from scan_gateway.scheduler import scheduler_service
from scan_gateway.utils.time_buckets import utc_now

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthCheckResponse)
def health_check(session_factory=Depends(get_session_factory)):
    """Health check endpoint"""
    db = session_factory()
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError:
        db_status = "error"
    finally:
        db.close()

    scheduler_status = "running" if scheduler_service.is_running else "stopped"

    return HealthCheckResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=utc_now().isoformat(),
        database=db_status,
        scheduler=scheduler_status
    )
