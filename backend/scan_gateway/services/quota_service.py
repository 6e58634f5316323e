"""
Quota ledger.

Per-identity usage counters scoped to a time bucket:

- anonymous callers by IP address and UTC day
- authenticated users by calendar month (tier limit + purchased scans)
- authenticated users by clock hour (burst rate limit)

Consumption is a single INSERT .. ON CONFLICT DO UPDATE statement guarded
by the limit, so concurrent requests from one identity never lose an
increment and never push the counter past the limit.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Tuple

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal, dialect_insert
from scan_gateway.errors import QuotaLedgerUnavailable
from scan_gateway.models import AnonymousDailyUsage, ApiRateLimit, ScanUsage
from scan_gateway.services.tiers import TierPolicy
from scan_gateway.utils.time_buckets import as_utc, day_bucket, hour_bucket, month_bucket


class BucketKind(str, Enum):
    ANONYMOUS_DAILY = "anonymous_daily"
    USER_MONTHLY = "user_monthly"
    USER_HOURLY = "user_hourly"


@dataclass(frozen=True)
class BucketTable:
    """Where and how a bucket kind is counted"""
    model: type
    identity_column: str
    bucket_column: str
    count_column: str
    updated_column: str
    denial_code: str
    bonus_column: Optional[str] = None


BUCKETS = {
    BucketKind.ANONYMOUS_DAILY: BucketTable(
        model=AnonymousDailyUsage,
        identity_column='ip_address',
        bucket_column='date',
        count_column='scans_used',
        updated_column='last_updated',
        denial_code='DAILY_LIMIT_REACHED',
    ),
    BucketKind.USER_MONTHLY: BucketTable(
        model=ScanUsage,
        identity_column='user_id',
        bucket_column='month_year',
        count_column='scans_used',
        updated_column='updated_at',
        denial_code='MONTHLY_LIMIT_REACHED',
        bonus_column='additional_scans_purchased',
    ),
    BucketKind.USER_HOURLY: BucketTable(
        model=ApiRateLimit,
        identity_column='user_id',
        bucket_column='hour_timestamp',
        count_column='request_count',
        updated_column='updated_at',
        denial_code='RATE_LIMIT_EXCEEDED',
    ),
}


@dataclass(frozen=True)
class QuotaIdentity:
    """Who is being counted: an IP address or a user id, per bucket kind"""
    kind: BucketKind
    value: str


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    kind: BucketKind
    bucket_key: str
    used: int
    limit: int
    additional: int
    total_limit: int
    remaining: int
    usage_percent: float
    warning: bool
    degraded: bool = False
    tier: Optional[str] = None

    @property
    def denial_code(self) -> str:
        return BUCKETS[self.kind].denial_code


def get_usage_percent(used: int, limit: int) -> float:
    """
    Share of the limit already used, clamped to [0, 100]
    """
    if limit <= 0:
        return 100.0 if used > 0 else 0.0
    return max(0.0, min(100.0, used / limit * 100))


def build_decision(
    kind: BucketKind,
    bucket_key,
    used: int,
    limit: int,
    additional: int = 0,
    allowed: Optional[bool] = None,
    degraded: bool = False,
    tier: Optional[str] = None
) -> QuotaDecision:
    """
    Build a decision from counter values

    Without an explicit `allowed` the decision is a pre-flight check:
    allowed while something remains.
    """
    total_limit = limit + additional
    remaining = max(0, total_limit - used)
    usage_percent = get_usage_percent(used, total_limit)

    return QuotaDecision(
        allowed=remaining > 0 if allowed is None else allowed,
        kind=kind,
        bucket_key=bucket_key.isoformat() if isinstance(bucket_key, datetime) else str(bucket_key),
        used=used,
        limit=limit,
        additional=additional,
        total_limit=total_limit,
        remaining=remaining,
        usage_percent=usage_percent,
        warning=usage_percent >= settings.USAGE_WARNING_PERCENT,
        degraded=degraded,
        tier=tier,
    )


class QuotaLedger:
    """Reads and consumes usage counters"""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        fail_open: Optional[bool] = None
    ):
        self.session_factory = session_factory
        self.fail_open = settings.QUOTA_FAIL_OPEN if fail_open is None else fail_open

    def check(self, identity: QuotaIdentity, bucket_key, limit: int, tier: Optional[str] = None) -> QuotaDecision:
        """Read-only quota status"""
        return self.check_and_consume(identity, bucket_key, limit, consume=False, tier=tier)

    def check_and_consume(
        self,
        identity: QuotaIdentity,
        bucket_key,
        limit: int,
        consume: bool = True,
        tier: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> QuotaDecision:
        """
        Check quota and, if `consume` is set, take one unit atomically

        Args:
            identity: Counted identity
            bucket_key: Time bucket ('YYYY-MM-DD', 'YYYY-MM' or hour datetime)
            limit: Base limit for the bucket (purchased scans are added on top)
            consume: Increment the counter when a unit is available
            tier: Tier name echoed in the decision
            now: Clock override for the row's update stamp

        Returns:
            QuotaDecision with post-increment counters

        Raises:
            QuotaLedgerUnavailable: storage failed and the ledger fails closed
        """
        bucket = BUCKETS[identity.kind]
        db = self.session_factory()
        try:
            if not consume:
                used, additional = self._read(db, bucket, identity.value, bucket_key)
                return build_decision(identity.kind, bucket_key, used, limit, additional, tier=tier)

            if limit <= 0 and bucket.bonus_column is None:
                used, additional = self._read(db, bucket, identity.value, bucket_key)
                return build_decision(identity.kind, bucket_key, used, limit, additional, allowed=False, tier=tier)

            row = self._increment(db, bucket, identity.value, bucket_key, limit, as_utc(now))
            if row is None:
                used, additional = self._read(db, bucket, identity.value, bucket_key)
                logger.info(
                    f"Quota denied ({bucket.denial_code}) for {identity.kind.value} "
                    f"{identity.value} in {bucket_key}: {used}/{limit + additional}"
                )
                return build_decision(identity.kind, bucket_key, used, limit, additional, allowed=False, tier=tier)

            used, additional = row
            return build_decision(identity.kind, bucket_key, used, limit, additional, allowed=True, tier=tier)

        except SQLAlchemyError as e:
            db.rollback()
            return self._on_ledger_failure(identity, bucket_key, limit, tier, e)
        finally:
            db.close()

    def release(self, identity: QuotaIdentity, bucket_key, now: Optional[datetime] = None) -> bool:
        """
        Give back one previously consumed unit

        Used when a request took a unit from one bucket and was then refused
        by another. The counter never goes below zero.

        Returns:
            True if a unit was returned
        """
        bucket = BUCKETS[identity.kind]
        table = bucket.model.__table__
        count_col = table.c[bucket.count_column]

        db = self.session_factory()
        try:
            result = db.execute(
                update(table).where(
                    table.c[bucket.identity_column] == identity.value,
                    table.c[bucket.bucket_column] == bucket_key,
                    count_col > 0
                ).values(**{
                    bucket.count_column: count_col - 1,
                    bucket.updated_column: as_utc(now),
                })
            )
            db.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to release {identity.kind.value} unit for {identity.value} in {bucket_key}: {e}")
            return False
        finally:
            db.close()

    def _read(self, db: Session, bucket: BucketTable, identity_value: str, bucket_key) -> Tuple[int, int]:
        columns = [getattr(bucket.model, bucket.count_column)]
        if bucket.bonus_column:
            columns.append(getattr(bucket.model, bucket.bonus_column))

        row = db.query(*columns).filter(
            getattr(bucket.model, bucket.identity_column) == identity_value,
            getattr(bucket.model, bucket.bucket_column) == bucket_key
        ).first()

        if row is None:
            return 0, 0
        return int(row[0] or 0), int(row[1] or 0) if bucket.bonus_column else 0

    def _increment(
        self,
        db: Session,
        bucket: BucketTable,
        identity_value: str,
        bucket_key,
        limit: int,
        now: datetime
    ) -> Optional[Tuple[int, int]]:
        """
        Insert-or-increment guarded by the limit, in one statement

        Returns:
            (used, additional) after the increment, or None when the
            bucket is already at its limit
        """
        table = bucket.model.__table__
        count_col = table.c[bucket.count_column]
        bonus_col = table.c[bucket.bonus_column] if bucket.bonus_column else None

        stmt = dialect_insert(db, bucket.model).values(**{
            bucket.identity_column: identity_value,
            bucket.bucket_column: bucket_key,
            bucket.count_column: 1,
            bucket.updated_column: now,
        })

        ceiling = bonus_col + limit if bonus_col is not None else limit
        stmt = stmt.on_conflict_do_update(
            index_elements=[bucket.identity_column, bucket.bucket_column],
            set_={
                bucket.count_column: count_col + 1,
                bucket.updated_column: now,
            },
            where=count_col < ceiling,
        )

        returning = [count_col] if bonus_col is None else [count_col, bonus_col]
        row = db.execute(stmt.returning(*returning)).first()
        db.commit()

        if row is None:
            return None
        return int(row[0]), int(row[1]) if bonus_col is not None else 0

    def _on_ledger_failure(self, identity: QuotaIdentity, bucket_key, limit: int, tier, error) -> QuotaDecision:
        if not self.fail_open:
            logger.error(f"Quota ledger unavailable for {identity.kind.value} {identity.value}, denying: {error}")
            raise QuotaLedgerUnavailable(f"Quota ledger unavailable: {error}") from error

        logger.error(
            f"Quota ledger unavailable for {identity.kind.value} {identity.value}, "
            f"allowing request (fail-open policy): {error}"
        )
        return build_decision(identity.kind, bucket_key, 0, limit, allowed=True, degraded=True, tier=tier)

    # Convenience wrappers per bucket kind

    def check_anonymous(self, ip_address: str, now: Optional[datetime] = None) -> QuotaDecision:
        return self.check(
            QuotaIdentity(BucketKind.ANONYMOUS_DAILY, ip_address),
            day_bucket(now),
            settings.ANONYMOUS_DAILY_LIMIT
        )

    def consume_anonymous(self, ip_address: str, now: Optional[datetime] = None) -> QuotaDecision:
        return self.check_and_consume(
            QuotaIdentity(BucketKind.ANONYMOUS_DAILY, ip_address),
            day_bucket(now),
            settings.ANONYMOUS_DAILY_LIMIT,
            now=now
        )

    def check_monthly(self, user_id: str, tier: TierPolicy, now: Optional[datetime] = None) -> QuotaDecision:
        return self.check(
            QuotaIdentity(BucketKind.USER_MONTHLY, user_id),
            month_bucket(now),
            tier.monthly_limit,
            tier=tier.name
        )

    def consume_monthly(self, user_id: str, tier: TierPolicy, now: Optional[datetime] = None) -> QuotaDecision:
        return self.check_and_consume(
            QuotaIdentity(BucketKind.USER_MONTHLY, user_id),
            month_bucket(now),
            tier.monthly_limit,
            tier=tier.name,
            now=now
        )

    def check_hourly(self, user_id: str, limit: int, now: Optional[datetime] = None) -> QuotaDecision:
        return self.check(QuotaIdentity(BucketKind.USER_HOURLY, user_id), hour_bucket(now), limit)

    def consume_hourly(self, user_id: str, limit: int, now: Optional[datetime] = None) -> QuotaDecision:
        return self.check_and_consume(
            QuotaIdentity(BucketKind.USER_HOURLY, user_id),
            hour_bucket(now),
            limit,
            now=now
        )

    def release_hourly(self, user_id: str, now: Optional[datetime] = None) -> bool:
        return self.release(QuotaIdentity(BucketKind.USER_HOURLY, user_id), hour_bucket(now), now)

    def grant_additional_scans(self, user_id: str, amount: int, now: Optional[datetime] = None) -> int:
        """
        Add purchased scans to the user's current month

        Returns:
            Total purchased scans for the month after the grant

        Raises:
            ValueError: amount is not positive
            QuotaLedgerUnavailable: storage failed (grants never fail open)
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        now = as_utc(now)
        db = self.session_factory()
        try:
            table = ScanUsage.__table__
            stmt = dialect_insert(db, ScanUsage).values(
                user_id=user_id,
                month_year=month_bucket(now),
                scans_used=0,
                additional_scans_purchased=amount,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=['user_id', 'month_year'],
                set_={
                    'additional_scans_purchased': table.c.additional_scans_purchased + amount,
                    'updated_at': now,
                },
            ).returning(table.c.additional_scans_purchased)

            total = db.execute(stmt).scalar_one()
            db.commit()

            logger.info(f"Granted {amount} additional scans to user {user_id} ({total} this month)")
            return int(total)
        except SQLAlchemyError as e:
            db.rollback()
            raise QuotaLedgerUnavailable(f"Could not grant additional scans: {e}") from e
        finally:
            db.close()


# Singleton instance
quota_ledger = QuotaLedger()
