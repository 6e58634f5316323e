"""
AI response cache.

Content-addressed store of AI responses with lazy expiry, hit accounting
and administrative invalidation. Lookups and writes never fail the
caller's request; invalidation errors propagate.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal, dialect_insert
from scan_gateway.errors import CacheUnavailable
from scan_gateway.models import AIResponseCache
from scan_gateway.utils.time_buckets import as_utc


@dataclass(frozen=True)
class CacheEntryData:
    """Response to be stored under a content hash"""
    content_hash: str
    response_data: Any
    provider: str
    model: str
    prompt_template_id: str
    prompt_version: str
    tokens_used: Optional[int] = None
    latency_ms: int = 0


@dataclass(frozen=True)
class CachedResponse:
    """Snapshot of a fresh cache row returned by a hit"""
    content_hash: str
    response_data: Any
    provider: str
    model: str
    prompt_template_id: str
    prompt_version: str
    tokens_used: Optional[int]
    latency_ms: int
    hit_count: int
    created_at: Optional[datetime]
    last_accessed_at: Optional[datetime]
    expires_at: Optional[datetime]


def _fresh(now: datetime):
    return or_(AIResponseCache.expires_at.is_(None), AIResponseCache.expires_at > now)


class CacheService:
    """Service for reading and maintaining the AI response cache"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ttl_days: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.ttl_days = settings.CACHE_TTL_DAYS if ttl_days is None else ttl_days

    def expiry_for(self, now: datetime) -> Optional[datetime]:
        """Expiry stamped on a write made at `now` (None = never expires)"""
        if not self.ttl_days or self.ttl_days <= 0:
            return None
        return now + timedelta(days=self.ttl_days)

    def get(self, content_hash: str, now: Optional[datetime] = None) -> Optional[CachedResponse]:
        """
        Look up a fresh entry and count the hit

        Args:
            content_hash: Cache key
            now: Clock override (UTC)

        Returns:
            CachedResponse on hit, None on miss or when storage fails
        """
        try:
            return self._lookup(content_hash, as_utc(now))
        except CacheUnavailable as e:
            logger.warning(f"Cache lookup degraded to miss for {content_hash[:16]}...: {e}")
            return None

    def _lookup(self, content_hash: str, now: datetime) -> Optional[CachedResponse]:
        db = self.session_factory()
        try:
            updated = db.query(AIResponseCache).filter(
                AIResponseCache.content_hash == content_hash,
                _fresh(now)
            ).update(
                {
                    AIResponseCache.hit_count: AIResponseCache.hit_count + 1,
                    AIResponseCache.last_accessed_at: now,
                },
                synchronize_session=False
            )

            if not updated:
                db.rollback()
                return None

            entry = db.query(AIResponseCache).filter(
                AIResponseCache.content_hash == content_hash
            ).first()
            db.commit()

            if entry is None:
                return None

            logger.info(f"Cache hit: {content_hash[:16]}... (hits: {entry.hit_count})")
            return CachedResponse(
                content_hash=entry.content_hash,
                response_data=json.loads(entry.response_json),
                provider=entry.provider,
                model=entry.model,
                prompt_template_id=entry.prompt_template_id,
                prompt_version=entry.prompt_version,
                tokens_used=entry.tokens_used,
                latency_ms=entry.latency_ms,
                hit_count=entry.hit_count,
                created_at=entry.created_at,
                last_accessed_at=entry.last_accessed_at,
                expires_at=entry.expires_at,
            )
        except (SQLAlchemyError, ValueError) as e:
            db.rollback()
            raise CacheUnavailable(f"Cache lookup failed: {e}") from e
        finally:
            db.close()

    def put(self, entry: CacheEntryData, now: Optional[datetime] = None, refresh: bool = False) -> bool:
        """
        Upsert a response by content hash

        An overwrite keeps the row's created_at and hit_count unless
        `refresh` is set; expires_at is always recomputed from `now`.

        Args:
            entry: Response and metadata to store
            now: Clock override (UTC)
            refresh: Reset hit history and creation time on overwrite

        Returns:
            True if the write landed, False if it was dropped
        """
        now = as_utc(now)
        db = self.session_factory()
        try:
            response_json = json.dumps(entry.response_data)
            expires_at = self.expiry_for(now)

            stmt = dialect_insert(db, AIResponseCache).values(
                content_hash=entry.content_hash,
                prompt_template_id=entry.prompt_template_id,
                prompt_version=entry.prompt_version,
                provider=entry.provider,
                model=entry.model,
                response_json=response_json,
                tokens_used=entry.tokens_used,
                latency_ms=max(0, int(entry.latency_ms or 0)),
                hit_count=0,
                created_at=now,
                last_accessed_at=now,
                expires_at=expires_at,
            )

            updates = {
                'prompt_template_id': stmt.excluded.prompt_template_id,
                'prompt_version': stmt.excluded.prompt_version,
                'provider': stmt.excluded.provider,
                'model': stmt.excluded.model,
                'response_json': stmt.excluded.response_json,
                'tokens_used': stmt.excluded.tokens_used,
                'latency_ms': stmt.excluded.latency_ms,
                'expires_at': stmt.excluded.expires_at,
                'last_accessed_at': stmt.excluded.last_accessed_at,
            }
            if refresh:
                updates['hit_count'] = 0
                updates['created_at'] = stmt.excluded.created_at

            db.execute(stmt.on_conflict_do_update(index_elements=['content_hash'], set_=updates))
            db.commit()

            logger.info(f"Saved to cache: {entry.content_hash[:16]}...")
            return True
        except (SQLAlchemyError, TypeError, ValueError) as e:
            db.rollback()
            logger.warning(f"Cache write dropped for {entry.content_hash[:16]}...: {e}")
            return False
        finally:
            db.close()

    def _delete(self, description: str, *criteria) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(AIResponseCache).filter(*criteria).delete(synchronize_session=False)
            db.commit()
            logger.info(f"{description}: {deleted} cache entries removed")
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheUnavailable(f"{description} failed: {e}") from e
        finally:
            db.close()

    def invalidate_all(self) -> int:
        """Delete every cache entry"""
        return self._delete("Flush all cache")

    def invalidate_by_prompt(self, template_id: str, version: Optional[str] = None) -> int:
        """Delete entries for a prompt template (all versions unless one is given)"""
        criteria = [AIResponseCache.prompt_template_id == template_id]
        if version is not None:
            criteria.append(AIResponseCache.prompt_version == version)
        return self._delete(f"Invalidate prompt {template_id} ({version or 'all versions'})", *criteria)

    def invalidate_by_model(self, model: str) -> int:
        return self._delete(f"Invalidate model {model}", AIResponseCache.model == model)

    def invalidate_by_key(self, content_hash: str) -> bool:
        return self._delete(
            f"Invalidate key {content_hash[:16]}...",
            AIResponseCache.content_hash == content_hash
        ) > 0

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Physically remove entries past their expiry"""
        now = as_utc(now)
        return self._delete(
            "Sweep expired cache",
            AIResponseCache.expires_at.isnot(None),
            AIResponseCache.expires_at < now
        )

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summarize cache contents for the admin dashboard
        """
        now = as_utc(now)
        db = self.session_factory()
        try:
            total_entries = db.query(AIResponseCache).count()
            expired_entries = db.query(AIResponseCache).filter(
                AIResponseCache.expires_at.isnot(None),
                AIResponseCache.expires_at <= now
            ).count()
            total_hits = db.query(func.coalesce(func.sum(AIResponseCache.hit_count), 0)).scalar()

            by_model = db.query(
                AIResponseCache.provider,
                AIResponseCache.model,
                func.count(AIResponseCache.id).label('entries'),
                func.coalesce(func.sum(AIResponseCache.hit_count), 0).label('hits')
            ).group_by(
                AIResponseCache.provider,
                AIResponseCache.model
            ).all()

            return {
                'total_entries': total_entries,
                'fresh_entries': total_entries - expired_entries,
                'expired_entries': expired_entries,
                'total_hits': int(total_hits or 0),
                'by_model': [
                    {'provider': row.provider, 'model': row.model, 'entries': row.entries, 'hits': int(row.hits)}
                    for row in by_model
                ],
            }
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"Cache stats failed: {e}") from e
        finally:
            db.close()


# Singleton instance
cache_service = CacheService()
