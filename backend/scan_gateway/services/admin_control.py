"""
Administrative cache control with role gating and an append-only audit trail.
"""
import json
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scan_gateway.database import SessionLocal
from scan_gateway.errors import AdminActionFailed, AdminActionForbidden, CacheUnavailable, InvalidAdminRequest
from scan_gateway.models import AdminAuditLog, UserRole
from scan_gateway.schemas.admin import CacheControlRequest
from scan_gateway.services.cache_service import CacheService, cache_service


REQUIRED_PARAMS = {
    'invalidate_by_prompt': ('prompt_template_id', 'promptTemplateId'),
    'invalidate_by_model': ('model', 'model'),
    'invalidate_by_key': ('cache_key', 'cacheKey'),
}


def has_role(user_id: str, role: str, session_factory: Callable[[], Session] = SessionLocal) -> bool:
    db = session_factory()
    try:
        return db.query(UserRole).filter(
            UserRole.user_id == user_id,
            UserRole.role == role
        ).first() is not None
    finally:
        db.close()


def grant_role(user_id: str, role: str, session_factory: Callable[[], Session] = SessionLocal) -> bool:
    """
    Give a user a role if they do not have it yet

    Returns:
        True if a role row was created
    """
    if has_role(user_id, role, session_factory):
        return False

    db = session_factory()
    try:
        db.add(UserRole(user_id=user_id, role=role))
        db.commit()
        logger.info(f"Granted role '{role}' to user {user_id}")
        return True
    finally:
        db.close()


def record_audit(
    user_id: Optional[str],
    action: str,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    """
    Append an audit row

    Returns:
        ID of the new row
    """
    db = session_factory()
    try:
        entry = AdminAuditLog(
            user_id=user_id,
            action=action,
            details_json=json.dumps(details, default=str) if details is not None else None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(entry)
        db.commit()
        return entry.id
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def list_audit_log(limit: int = 100, session_factory: Callable[[], Session] = SessionLocal) -> List[Dict[str, Any]]:
    """Most recent audit rows first"""
    db = session_factory()
    try:
        rows = db.query(AdminAuditLog).order_by(
            AdminAuditLog.created_at.desc(),
            AdminAuditLog.id.desc()
        ).limit(limit).all()

        return [
            {
                'id': row.id,
                'user_id': row.user_id,
                'action': row.action,
                'details': json.loads(row.details_json) if row.details_json else None,
                'ip_address': row.ip_address,
                'user_agent': row.user_agent,
                'created_at': row.created_at,
            }
            for row in rows
        ]
    finally:
        db.close()


class AdminCacheControl:
    """Runs cache control actions on behalf of admins"""

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        session_factory: Callable[[], Session] = SessionLocal
    ):
        self.cache = cache or cache_service
        self.session_factory = session_factory

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        try:
            return has_role(user_id, 'admin', self.session_factory)
        except SQLAlchemyError as e:
            raise AdminActionFailed(f"Role lookup failed: {e}") from e

    def require_admin(self, user_id: Optional[str]) -> None:
        if not self.is_admin(user_id):
            logger.warning(f"Non-admin user {user_id} attempted an admin action")
            raise AdminActionForbidden("Admin role required")

    def execute(
        self,
        actor_id: str,
        request: CacheControlRequest,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Authorize, validate, run and audit one cache control action

        Args:
            actor_id: Authenticated user id
            request: Validated request body
            ip_address: Caller IP for the audit trail
            user_agent: Caller user agent for the audit trail

        Returns:
            {'success', 'message', 'deletedCount'} ('deleted' for invalidate_by_key)

        Raises:
            AdminActionForbidden: actor is not an admin (nothing was touched)
            InvalidAdminRequest: a required parameter is missing
            AdminActionFailed: the cache store failed
        """
        self.require_admin(actor_id)

        required = REQUIRED_PARAMS.get(request.action)
        if required and not getattr(request, required[0]):
            raise InvalidAdminRequest(f"{required[1]} is required for {request.action}")

        try:
            result = self._dispatch(request)
        except CacheUnavailable as e:
            logger.error(f"Admin cache control '{request.action}' by {actor_id} failed: {e}")
            raise AdminActionFailed(e.message) from e

        logger.info(f"Cache control action completed by {actor_id}: {request.action} -> {result['message']}")

        details = {
            'parameters': request.model_dump(exclude_none=True, by_alias=True),
            'result': result,
        }
        try:
            record_audit(actor_id, f"cache_control.{request.action}", details, ip_address, user_agent,
                         session_factory=self.session_factory)
        except SQLAlchemyError as e:
            logger.error(f"Failed to write audit row for {request.action} by {actor_id}: {e}")

        return result

    def _dispatch(self, request: CacheControlRequest) -> Dict[str, Any]:
        if request.action == 'flush_all':
            deleted = self.cache.invalidate_all()
            return {
                'success': True,
                'message': f"Flushed all cache ({deleted} entries)",
                'deletedCount': deleted,
            }

        if request.action == 'invalidate_by_prompt':
            deleted = self.cache.invalidate_by_prompt(request.prompt_template_id, request.prompt_version)
            suffix = f" (v{request.prompt_version})" if request.prompt_version else ""
            return {
                'success': True,
                'message': f"Invalidated {deleted} cache entries for prompt {request.prompt_template_id}{suffix}",
                'deletedCount': deleted,
            }

        if request.action == 'invalidate_by_model':
            deleted = self.cache.invalidate_by_model(request.model)
            return {
                'success': True,
                'message': f"Invalidated {deleted} cache entries for model {request.model}",
                'deletedCount': deleted,
            }

        deleted = self.cache.invalidate_by_key(request.cache_key)
        return {
            'success': True,
            'message': 'Cache entry invalidated' if deleted else 'Cache key not found',
            'deletedCount': 1 if deleted else 0,
            'deleted': deleted,
        }
