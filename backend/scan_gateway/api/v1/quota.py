from fastapi import APIRouter, Depends, Request

from scan_gateway.api.deps import get_current_user_id, get_quota_ledger, get_session_factory
from scan_gateway.errors import QuotaExceeded
from scan_gateway.schemas import AnonymousQuotaResponse, QuotaStatusResponse
from scan_gateway.services.quota_service import QuotaDecision, QuotaLedger
from scan_gateway.services.tiers import get_user_tier
from scan_gateway.utils.request import get_client_ip

router = APIRouter(prefix="/quota", tags=["quota"])


def _monthly_status(decision: QuotaDecision) -> QuotaStatusResponse:
    return QuotaStatusResponse(
        can_scan=decision.remaining > 0 or decision.degraded,
        scans_used=decision.used,
        scans_limit=decision.limit,
        additional_scans=decision.additional,
        total_limit=decision.total_limit,
        remaining=decision.remaining,
        usage_percent=round(decision.usage_percent),
        warning=decision.warning,
        tier=decision.tier,
        degraded=decision.degraded,
    )


@router.get("", response_model=QuotaStatusResponse)
def get_quota(
    user_id: str = Depends(get_current_user_id),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    session_factory=Depends(get_session_factory)
):
    """Monthly scan quota for the authenticated user"""
    tier = get_user_tier(user_id, session_factory)
    return _monthly_status(ledger.check_monthly(user_id, tier))


@router.post("/increment", response_model=QuotaStatusResponse)
def increment_usage(
    user_id: str = Depends(get_current_user_id),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    session_factory=Depends(get_session_factory)
):
    """Consume one scan from the authenticated user's monthly quota"""
    tier = get_user_tier(user_id, session_factory)
    decision = ledger.consume_monthly(user_id, tier)
    if not decision.allowed:
        raise QuotaExceeded(
            f"Monthly limit of {decision.total_limit} scans reached for the {tier.name} tier",
            decision.denial_code,
            decision
        )
    return _monthly_status(decision)


@router.get("/anonymous", response_model=AnonymousQuotaResponse)
def get_anonymous_quota(
    request: Request,
    ledger: QuotaLedger = Depends(get_quota_ledger)
):
    """Daily scan quota for the calling IP address"""
    decision = ledger.check_anonymous(get_client_ip(request))
    return AnonymousQuotaResponse(
        can_scan=decision.allowed,
        scans_used=decision.used,
        scans_limit=decision.total_limit,
        remaining=decision.remaining,
        usage_percent=round(decision.usage_percent),
        warning=decision.warning,
        degraded=decision.degraded,
    )
