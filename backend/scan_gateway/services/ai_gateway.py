"""
AI request gate.

Every AI call goes through the same sequence: admit the caller against
their quota, look the request up in the response cache, and on a miss call
the provider, store the response and record a usage metric.
"""
import inspect
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, FrozenSet, Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

from scan_gateway.database import SessionLocal
from scan_gateway.errors import CacheMiss, QuotaExceeded
from scan_gateway.services.cache_service import CacheEntryData, CacheService, cache_service
from scan_gateway.services.metrics_service import record_usage_metric
from scan_gateway.services.quota_service import QuotaDecision, QuotaLedger, quota_ledger
from scan_gateway.services.tiers import get_user_tier
from scan_gateway.utils.content_hash import FREE_TEXT_FIELDS, build_cache_key, language_family
from scan_gateway.utils.time_buckets import as_utc


class CacheStrategy(str, Enum):
    PREFER = "prefer"  # serve from cache when fresh
    BYPASS = "bypass"  # always call the provider, still store the result
    ONLY = "only"      # never call the provider


@dataclass(frozen=True)
class AIRequestDescriptor:
    """Everything that identifies an AI request for caching and metrics"""
    prompt_template_id: str
    prompt_version: str
    model: str
    provider: str
    operation: str
    payload: Any = field(default_factory=dict)
    language: Optional[str] = None
    free_text_fields: FrozenSet[str] = FREE_TEXT_FIELDS

    def cache_key(self) -> str:
        """Cache key, bucketed by language family rather than exact language"""
        return build_cache_key(
            self.prompt_template_id,
            self.prompt_version,
            self.model,
            self.provider,
            {'lang': language_family(self.language), 'request': self.payload},
            self.free_text_fields,
        )


@dataclass(frozen=True)
class CallerIdentity:
    ip_address: str
    user_id: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id


@dataclass(frozen=True)
class ProviderResult:
    data: Any
    tokens_used: Optional[int] = None


@dataclass(frozen=True)
class GatewayResult:
    data: Any
    cache_hit: bool
    cache_key: str
    provider: str
    model: str
    tokens_used: Optional[int]
    latency_ms: int
    quota: QuotaDecision


ProviderCall = Callable[[AIRequestDescriptor], Union[ProviderResult, Awaitable[ProviderResult]]]


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


class AIRequestGate:
    """Quota admission, response caching and metrics around a provider call"""

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        ledger: Optional[QuotaLedger] = None,
        session_factory: Callable[[], Session] = SessionLocal
    ):
        self.cache = cache or cache_service
        self.ledger = ledger or quota_ledger
        self.session_factory = session_factory

    def admit(self, caller: CallerIdentity, now: Optional[datetime] = None) -> QuotaDecision:
        """
        Consume one unit of the caller's quota

        Anonymous callers are counted per IP and UTC day. Users are counted
        per month against their tier, and tiers with an hourly cap also
        consume the hourly bucket.

        Raises:
            QuotaExceeded: with DAILY_LIMIT_REACHED, MONTHLY_LIMIT_REACHED
                or RATE_LIMIT_EXCEEDED
        """
        now = as_utc(now)

        if caller.is_anonymous:
            decision = self.ledger.consume_anonymous(caller.ip_address, now)
            if not decision.allowed:
                raise QuotaExceeded(
                    f"Daily limit of {decision.total_limit} free scans reached. Sign up for more scans.",
                    decision.denial_code,
                    decision
                )
            return decision

        tier = get_user_tier(caller.user_id, self.session_factory)

        monthly = self.ledger.check_monthly(caller.user_id, tier, now)
        if not monthly.allowed:
            raise QuotaExceeded(
                f"Monthly limit of {monthly.total_limit} scans reached for the {tier.name} tier",
                monthly.denial_code,
                monthly
            )

        if tier.hourly_limit:
            hourly = self.ledger.consume_hourly(caller.user_id, tier.hourly_limit, now)
            if not hourly.allowed:
                raise QuotaExceeded(
                    f"Rate limit of {tier.hourly_limit} requests per hour exceeded",
                    hourly.denial_code,
                    hourly
                )

        monthly = self.ledger.consume_monthly(caller.user_id, tier, now)
        if not monthly.allowed:
            # Another request took the last monthly unit after the check
            if tier.hourly_limit and not hourly.degraded:
                self.ledger.release_hourly(caller.user_id, now)
            raise QuotaExceeded(
                f"Monthly limit of {monthly.total_limit} scans reached for the {tier.name} tier",
                monthly.denial_code,
                monthly
            )
        return monthly

    async def execute(
        self,
        descriptor: AIRequestDescriptor,
        caller: CallerIdentity,
        call_provider: ProviderCall,
        strategy: CacheStrategy = CacheStrategy.PREFER,
        now: Optional[datetime] = None
    ) -> GatewayResult:
        """
        Run one AI request through quota, cache and provider

        Args:
            descriptor: Request identity (template, version, model, payload)
            caller: Who is asking
            call_provider: Callable (sync or async) invoked on a cache miss
            strategy: Cache strategy
            now: Clock override (UTC)

        Returns:
            GatewayResult describing where the data came from

        Raises:
            QuotaExceeded: caller has no quota left
            CacheMiss: strategy is ONLY and no fresh entry exists
        """
        now = as_utc(now)
        quota = self.admit(caller, now)
        cache_key = descriptor.cache_key()

        if strategy != CacheStrategy.BYPASS:
            started = time.perf_counter()
            cached = self.cache.get(cache_key, now)
            lookup_ms = _elapsed_ms(started)

            if cached is not None:
                record_usage_metric(
                    provider=cached.provider,
                    model=cached.model,
                    operation=descriptor.operation,
                    latency_ms=lookup_ms,
                    cache_hit=True,
                    tokens_used=cached.tokens_used,
                    cache_key=cache_key,
                    timestamp=now,
                    session_factory=self.session_factory,
                )
                return GatewayResult(
                    data=cached.response_data,
                    cache_hit=True,
                    cache_key=cache_key,
                    provider=cached.provider,
                    model=cached.model,
                    tokens_used=cached.tokens_used,
                    latency_ms=lookup_ms,
                    quota=quota,
                )

            if strategy == CacheStrategy.ONLY:
                raise CacheMiss(f"No cached response for {descriptor.prompt_template_id}")

        logger.info(
            f"Calling {descriptor.provider}/{descriptor.model} for {descriptor.operation} "
            f"({descriptor.prompt_template_id} v{descriptor.prompt_version})"
        )
        started = time.perf_counter()
        result = call_provider(descriptor)
        if inspect.isawaitable(result):
            result = await result
        latency_ms = _elapsed_ms(started)

        self.cache.put(
            CacheEntryData(
                content_hash=cache_key,
                response_data=result.data,
                provider=descriptor.provider,
                model=descriptor.model,
                prompt_template_id=descriptor.prompt_template_id,
                prompt_version=descriptor.prompt_version,
                tokens_used=result.tokens_used,
                latency_ms=latency_ms,
            ),
            now=now,
        )
        record_usage_metric(
            provider=descriptor.provider,
            model=descriptor.model,
            operation=descriptor.operation,
            latency_ms=latency_ms,
            cache_hit=False,
            tokens_used=result.tokens_used,
            cache_key=cache_key,
            timestamp=now,
            session_factory=self.session_factory,
        )

        return GatewayResult(
            data=result.data,
            cache_hit=False,
            cache_key=cache_key,
            provider=descriptor.provider,
            model=descriptor.model,
            tokens_used=result.tokens_used,
            latency_ms=latency_ms,
            quota=quota,
        )
