"""
Shared FastAPI dependencies: session factory, services and bearer auth.
"""
import hashlib
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from scan_gateway.database import SessionLocal
from scan_gateway.errors import Unauthorized
from scan_gateway.models import AccessToken
from scan_gateway.services.admin_control import AdminCacheControl
from scan_gateway.services.cache_service import CacheService
from scan_gateway.services.quota_service import QuotaLedger
from scan_gateway.utils.time_buckets import utc_now


def get_session_factory() -> Callable[[], Session]:
    """Session factory used by every service (overridden in tests)"""
    return SessionLocal


def get_cache_service(session_factory=Depends(get_session_factory)) -> CacheService:
    return CacheService(session_factory=session_factory)


def get_quota_ledger(session_factory=Depends(get_session_factory)) -> QuotaLedger:
    return QuotaLedger(session_factory=session_factory)


def get_admin_control(
    cache: CacheService = Depends(get_cache_service),
    session_factory=Depends(get_session_factory)
) -> AdminCacheControl:
    return AdminCacheControl(cache=cache, session_factory=session_factory)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def get_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get('authorization')
    if not header:
        return None
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def resolve_user_id(token: str, session_factory: Callable[[], Session]) -> Optional[str]:
    """User id for a bearer token, None when unknown or expired"""
    db = session_factory()
    try:
        access_token = db.query(AccessToken).filter(AccessToken.token_hash == hash_token(token)).first()
        if not access_token:
            return None
        if access_token.expires_at is not None and access_token.expires_at <= utc_now():
            return None
        return access_token.user_id
    finally:
        db.close()


def get_current_user_id(
    token: Optional[str] = Depends(get_bearer_token),
    session_factory=Depends(get_session_factory)
) -> str:
    """
    Resolve the request's bearer token to a user id

    Raises:
        Unauthorized: header missing, token unknown or expired
    """
    if not token:
        raise Unauthorized("Unauthorized - No authorization header")

    user_id = resolve_user_id(token, session_factory)
    if not user_id:
        raise Unauthorized("Unauthorized - Invalid or expired token")
    return user_id
