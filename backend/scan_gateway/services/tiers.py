"""
Subscription tiers and their quota policy.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scan_gateway.config import settings
from scan_gateway.database import SessionLocal
from scan_gateway.models import UserSubscription


@dataclass(frozen=True)
class TierPolicy:
    """Static quota policy for a subscription tier"""
    name: str
    monthly_limit: int
    hourly_limit: Optional[int] = None


def tier_policies() -> Dict[str, TierPolicy]:
    return {
        'free': TierPolicy('free', settings.FREE_MONTHLY_LIMIT),
        'basic': TierPolicy('basic', settings.BASIC_MONTHLY_LIMIT),
        'pro': TierPolicy('pro', settings.PRO_MONTHLY_LIMIT, settings.PRO_HOURLY_LIMIT),
    }


def get_tier_policy(tier: str) -> TierPolicy:
    """Policy for a tier name, free for anything unknown"""
    policies = tier_policies()
    return policies.get(tier, policies['free'])


def resolve_tier(product_id: Optional[str], status: Optional[str]) -> TierPolicy:
    """
    Map a billing product and subscription status to a tier

    Args:
        product_id: External product identifier
        status: Subscription status ('active', 'canceled', ...)

    Returns:
        The tier's policy; inactive or unrecognized subscriptions are free
    """
    if status != 'active' or not product_id:
        return get_tier_policy('free')

    product_tiers = {
        settings.BASIC_PRODUCT_ID: 'basic',
        settings.PRO_PRODUCT_ID: 'pro',
    }
    return get_tier_policy(product_tiers.get(product_id, 'free'))


def get_user_tier(user_id: str, session_factory: Callable[[], Session] = SessionLocal) -> TierPolicy:
    """
    Look up a user's subscription and resolve the tier

    A failed lookup resolves to free.
    """
    db = session_factory()
    try:
        subscription = db.query(UserSubscription).filter(UserSubscription.user_id == user_id).first()
        if not subscription:
            return get_tier_policy('free')
        return resolve_tier(subscription.product_id, subscription.status)
    except SQLAlchemyError as e:
        logger.warning(f"Subscription lookup failed for user {user_id}, using free tier: {e}")
        return get_tier_policy('free')
    finally:
        db.close()
