"""
AI usage metrics: per-call recording and the daily rollup.
"""
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal
from scan_gateway.models import AIMetricsDailyRollup, AIUsageMetric
from scan_gateway.utils.time_buckets import as_utc, yesterday


# USD per 1M tokens (input, output)
COST_PER_1M_TOKENS = {
    'gemini-2.0-flash-exp': (0.075, 0.30),
    'gemini-2.5-flash': (0.075, 0.30),
    'gemini-2.5-pro': (1.25, 5.00),
    'gemini-1.5-pro': (1.25, 5.00),
    'gemini-1.5-flash': (0.075, 0.30),
}

INPUT_TOKEN_SHARE = 0.7


def estimate_cost_usd(model: str, tokens_used: Optional[int]) -> float:
    """
    Estimate the cost of a call from its total token count

    Totals are split 70/30 between input and output; unknown models are
    priced as the default model.
    """
    if not tokens_used:
        return 0.0

    input_price, output_price = COST_PER_1M_TOKENS.get(
        model, COST_PER_1M_TOKENS.get(settings.DEFAULT_PRICING_MODEL, (0.075, 0.30))
    )
    input_tokens = tokens_used * INPUT_TOKEN_SHARE
    output_tokens = tokens_used - input_tokens

    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000


def record_usage_metric(
    provider: str,
    model: str,
    operation: str,
    latency_ms: int,
    cache_hit: bool,
    tokens_used: Optional[int] = None,
    cache_key: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> bool:
    """
    Append one raw usage row

    Metrics never fail the request they describe: errors are logged and
    False is returned.
    """
    db = session_factory()
    try:
        metric = AIUsageMetric(
            timestamp=as_utc(timestamp),
            provider=provider,
            model=model,
            operation=operation,
            latency_ms=max(0, int(latency_ms)),
            tokens_used=tokens_used,
            cache_hit=cache_hit,
            cache_key_hash=cache_key[:32] if cache_key else None,
            estimated_cost_usd=0.0 if cache_hit else estimate_cost_usd(model, tokens_used),
        )
        db.add(metric)
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Failed to record usage metric for {provider}/{model}/{operation}: {e}")
        return False
    finally:
        db.close()


def percentile_cont(sorted_values: Sequence[int], fraction: float) -> Optional[float]:
    """
    Continuous percentile with linear interpolation between closest ranks

    Args:
        sorted_values: Values in ascending order
        fraction: Percentile as a fraction (0.95 for p95)
    """
    if not sorted_values:
        return None
    if len(sorted_values) == 1:
        return float(sorted_values[0])

    position = (len(sorted_values) - 1) * fraction
    lower = int(position)
    upper = min(lower + 1, len(sorted_values) - 1)
    weight = position - lower

    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * weight


def _day_window(target_date: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(target_date, time.min)
    return start, start + timedelta(days=1)


def aggregate_daily_metrics(
    target_date: Optional[date] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> int:
    """
    Compact one UTC day of raw metrics into rollup rows

    Re-running for the same date replaces that date's rollups, so the job
    can be repeated safely (and run hourly for today's partial numbers).

    Args:
        target_date: Day to aggregate, yesterday (UTC) by default

    Returns:
        Number of rollup rows written
    """
    target_date = target_date or yesterday()
    start, end = _day_window(target_date)

    logger.info(f"Aggregating AI metrics for {target_date}")

    db = session_factory()
    try:
        rows = db.query(
            AIUsageMetric.provider,
            AIUsageMetric.model,
            AIUsageMetric.operation,
            AIUsageMetric.latency_ms,
            AIUsageMetric.tokens_used,
            AIUsageMetric.cache_hit,
            AIUsageMetric.estimated_cost_usd
        ).filter(
            AIUsageMetric.timestamp >= start,
            AIUsageMetric.timestamp < end
        ).all()

        groups: Dict[Tuple[str, str, str], List] = defaultdict(list)
        for row in rows:
            groups[(row.provider, row.model, row.operation)].append(row)

        db.query(AIMetricsDailyRollup).filter(
            AIMetricsDailyRollup.date == target_date
        ).delete(synchronize_session=False)

        for (provider, model, operation), metrics in groups.items():
            total = len(metrics)
            hits = sum(1 for m in metrics if m.cache_hit)
            latencies = sorted(m.latency_ms for m in metrics)
            p95 = percentile_cont(latencies, 0.95)
            p99 = percentile_cont(latencies, 0.99)

            db.add(AIMetricsDailyRollup(
                date=target_date,
                provider=provider,
                model=model,
                operation=operation,
                total_requests=total,
                cache_hits=hits,
                cache_misses=total - hits,
                hit_rate=round(hits / total, 4),
                avg_latency_ms=round(sum(latencies) / total),
                p95_latency_ms=round(p95) if p95 is not None else None,
                p99_latency_ms=round(p99) if p99 is not None else None,
                total_tokens=sum(m.tokens_used or 0 for m in metrics),
                estimated_cost_usd=round(sum(m.estimated_cost_usd or 0.0 for m in metrics), 6),
            ))

        db.commit()

        logger.info(f"Aggregated {len(rows)} metrics into {len(groups)} rollup rows for {target_date}")
        return len(groups)

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Metrics aggregation failed for {target_date}: {e}")
        raise
    finally:
        db.close()


def get_daily_rollups(
    start: date,
    end: date,
    model: Optional[str] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> List[AIMetricsDailyRollup]:
    """Rollup rows between two dates (inclusive), newest first"""
    db = session_factory()
    try:
        query = db.query(AIMetricsDailyRollup).filter(
            AIMetricsDailyRollup.date >= start,
            AIMetricsDailyRollup.date <= end
        )
        if model:
            query = query.filter(AIMetricsDailyRollup.model == model)

        rollups = query.order_by(
            AIMetricsDailyRollup.date.desc(),
            AIMetricsDailyRollup.provider,
            AIMetricsDailyRollup.model,
            AIMetricsDailyRollup.operation
        ).all()

        # Detach so callers can read after the session closes
        db.expunge_all()
        return rollups
    finally:
        db.close()
