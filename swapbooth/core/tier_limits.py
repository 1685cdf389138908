"""
Tier configuration for the generation paywall.
Defines quota limits, credit costs and watermark policy per tier.
"""

from typing import Dict, Optional
from dataclasses import dataclass

from .errors import UnknownTierError
from ..schemas.identity import OperationClass


@dataclass(frozen=True)
class TierLimits:
    """Limits for a user tier."""
    tier_id: str
    display_name: str
    description: str
    quick_limit: Optional[int]  # None = not metered per class
    premium_limit: Optional[int]
    monthly_limit: Optional[int]  # Shared pool for both classes (subscriptions only)
    can_purchase_credits: bool
    watermark_free: bool

    @property
    def has_monthly_pool(self) -> bool:
        return self.monthly_limit is not None


ANONYMOUS_TIER = "anonymous"
FREE_TIER = "free"
BASE_TIER = "base"
PAID_TIER = "paid"
ADMIN_TIER = "admin"

SUBSCRIPTION_TIERS = (BASE_TIER, PAID_TIER)

# Tier configuration
# - anonymous: no account, separate quick/premium quotas
# - free: signed up, same quotas, can buy credits for overflow
# - base: subscription with a 50 generation monthly pool (any class)
# - paid: legacy Pro subscription, billed like base
TIER_LIMITS: Dict[str, TierLimits] = {
    ANONYMOUS_TIER: TierLimits(
        tier_id=ANONYMOUS_TIER,
        display_name="Anonymous",
        description="Try it without signing up",
        quick_limit=5,
        premium_limit=1,
        monthly_limit=None,
        can_purchase_credits=False,
        watermark_free=False,
    ),
    FREE_TIER: TierLimits(
        tier_id=FREE_TIER,
        display_name="Free",
        description="5 quick and 1 premium generation",
        quick_limit=5,
        premium_limit=1,
        monthly_limit=None,
        can_purchase_credits=True,
        watermark_free=False,
    ),
    BASE_TIER: TierLimits(
        tier_id=BASE_TIER,
        display_name="Base",
        description="50 generations per month, no watermark",
        quick_limit=None,
        premium_limit=None,
        monthly_limit=50,
        can_purchase_credits=True,
        watermark_free=True,
    ),
    PAID_TIER: TierLimits(
        tier_id=PAID_TIER,
        display_name="Pro",
        description="Legacy Pro subscription, 50 generations per month",
        quick_limit=None,
        premium_limit=None,
        monthly_limit=50,
        can_purchase_credits=True,
        watermark_free=True,
    ),
}

# Credits charged per generation once the standing quota is used up.
# Premium must stay strictly more expensive than quick.
CREDIT_COSTS: Dict[OperationClass, int] = {
    OperationClass.QUICK: 1,
    OperationClass.PREMIUM: 2,
}

UPGRADE_MESSAGES: Dict[str, str] = {
    ANONYMOUS_TIER: "Sign up for free to keep generating!",
    FREE_TIER: "Subscribe to Base for 50 generations a month, or buy credits.",
    BASE_TIER: "Monthly limit reached. Buy credits or wait for your monthly reset.",
    PAID_TIER: "Monthly limit reached. Buy credits or wait for your monthly reset.",
}


def get_tier_limits(tier_id: str) -> TierLimits:
    """Get limits for a given tier. Unknown tiers are a programming error."""
    try:
        return TIER_LIMITS[tier_id]
    except KeyError:
        raise UnknownTierError(tier_id) from None


def get_upgrade_message(tier_id: str) -> str:
    """Human-readable upgrade hint for a limit-reached response."""
    return UPGRADE_MESSAGES.get(tier_id, "Upgrade your plan for more generations.")
