"""
Usage accounting: tier resolution, quota decisions and next-state counters.

All quota arithmetic lives here. ``check_usage`` and ``increment_usage``
never talk to Supabase; callers fetch the profile beforehand and persist
``IncrementResult.profile_updates`` afterwards.

Quota model:
- anonymous/free: separate quick and premium quotas (5 + 1)
- base/paid: one monthly pool shared by both classes (50), reset monthly
- beyond the standing quota, tiers that allow it pay with credits
  (quick = 1 credit, premium = 2 credits)
"""
import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.errors import UsageErrorCode
from ..core.tier_limits import (
    ANONYMOUS_TIER,
    BASE_TIER,
    FREE_TIER,
    PAID_TIER,
    TierLimits,
    get_tier_limits,
)
from ..schemas.identity import (
    AnonymousIdentity,
    AuthenticatedIdentity,
    Identity,
    OperationClass,
)
from ..schemas.usage import (
    IncrementResult,
    Profile,
    UsageCounters,
    UsageDecision,
    UsageSnapshot,
)
from .anonymous_usage import AnonymousUsageStore, anonymous_usage_store
from .credit_ledger import CreditLedger, credit_ledger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    """Naive timestamps from the database are UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def next_monthly_reset(now: datetime) -> datetime:
    """Same day and time one calendar month later, clamped to the month's last day."""
    year = now.year + (1 if now.month == 12 else 0)
    month = 1 if now.month == 12 else now.month + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def is_monthly_reset_due(profile: Optional[Profile], now: datetime) -> bool:
    """A reset is due once the stored reset timestamp is at or before now."""
    if profile is None or profile.monthly_reset_at is None:
        return False
    return _as_aware(profile.monthly_reset_at) <= _as_aware(now)


def _remaining(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return max(0, limit - used)


class UsageAccountant:
    """Decides whether a generation may run and computes the counters after it."""

    def __init__(
        self,
        anonymous_store: Optional[AnonymousUsageStore] = None,
        ledger: Optional[CreditLedger] = None,
    ):
        self.anonymous_store = anonymous_store if anonymous_store is not None else anonymous_usage_store
        self.ledger = ledger if ledger is not None else credit_ledger

    # ------------------------------------------------------------------
    # Tier resolution
    # ------------------------------------------------------------------

    def resolve_tier(self, identity: Optional[Identity], profile: Optional[Profile]) -> str:
        """
        Resolve the tier of a caller.

        Comparisons are exact and case-sensitive: only ``tier == "base"``,
        ``tier == "paid"`` or ``subscription_status == "active"`` count as a
        subscription. ``"trialing"`` and ``"Active"`` resolve to free.
        """
        if identity is None or isinstance(identity, AnonymousIdentity):
            return ANONYMOUS_TIER
        if profile is None:
            return FREE_TIER
        if profile.tier == BASE_TIER:
            return BASE_TIER
        if profile.tier == PAID_TIER or profile.subscription_status == "active":
            return PAID_TIER
        return FREE_TIER

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def counters_for(self, identity: Optional[Identity], profile: Optional[Profile]) -> UsageCounters:
        """Current counters for an identity, from the anonymous store or the profile."""
        if identity is None:
            return UsageCounters()
        if isinstance(identity, AnonymousIdentity):
            counts = self.anonymous_store.get_counts(identity)
            return UsageCounters(quick_used=counts.quick_used, premium_used=counts.premium_used)
        if profile is None:
            return UsageCounters()
        return UsageCounters(
            quick_used=profile.quick_count,
            premium_used=profile.premium_count,
            monthly_used=profile.monthly_generation_count,
            credit_balance=self.ledger.balance_of(profile),
        )

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def check_usage(
        self,
        identity: Optional[Identity],
        profile: Optional[Profile],
        operation_class: OperationClass,
        now: Optional[datetime] = None,
    ) -> UsageDecision:
        """Decide whether ``identity`` may run one ``operation_class`` generation."""
        operation_class = OperationClass(operation_class)
        now = now or _utcnow()

        tier_id = self.resolve_tier(identity, profile)
        tier = get_tier_limits(tier_id)
        counters = self.counters_for(identity, profile)
        credit_cost = self.ledger.cost(operation_class)
        balance = counters.credit_balance

        decision = UsageDecision(
            can_generate=False,
            tier=tier_id,
            tier_name=tier.display_name,
            operation_class=operation_class,
            quick_used=counters.quick_used,
            quick_limit=tier.quick_limit,
            quick_remaining=_remaining(tier.quick_limit, counters.quick_used),
            premium_used=counters.premium_used,
            premium_limit=tier.premium_limit,
            premium_remaining=_remaining(tier.premium_limit, counters.premium_used),
            credit_balance=balance,
            watermark_free=tier.watermark_free,
        )

        if tier.has_monthly_pool:
            return self._check_monthly_pool(decision, tier, profile, counters, credit_cost, now)
        return self._check_class_quota(decision, tier, counters, operation_class, credit_cost)

    def _check_monthly_pool(
        self,
        decision: UsageDecision,
        tier: TierLimits,
        profile: Optional[Profile],
        counters: UsageCounters,
        credit_cost: int,
        now: datetime,
    ) -> UsageDecision:
        reset_due = is_monthly_reset_due(profile, now)
        monthly_used = 0 if reset_due else counters.monthly_used
        limit = tier.monthly_limit

        decision.used = monthly_used
        decision.limit = limit
        decision.remaining = _remaining(limit, monthly_used)
        decision.monthly_reset_due = reset_due

        if monthly_used < limit:
            decision.can_generate = True
            decision.reason = f"{decision.remaining} generations remaining this month"
        elif counters.credit_balance >= credit_cost:
            decision.can_generate = True
            decision.use_credit = True
            decision.credit_cost = credit_cost
            decision.reason = f"Monthly limit reached, using {credit_cost} credit(s)"
        else:
            decision.reason = "Monthly limit reached and not enough credits"
        return decision

    def _check_class_quota(
        self,
        decision: UsageDecision,
        tier: TierLimits,
        counters: UsageCounters,
        operation_class: OperationClass,
        credit_cost: int,
    ) -> UsageDecision:
        if operation_class == OperationClass.QUICK:
            used, limit = counters.quick_used, tier.quick_limit
        else:
            used, limit = counters.premium_used, tier.premium_limit

        decision.used = used
        decision.limit = limit
        decision.remaining = _remaining(limit, used)

        if limit is None or used < limit:
            decision.can_generate = True
            decision.reason = f"{decision.remaining} {operation_class.value} generation(s) remaining"
        elif tier.can_purchase_credits and counters.credit_balance >= credit_cost:
            decision.can_generate = True
            decision.use_credit = True
            decision.credit_cost = credit_cost
            decision.reason = f"{operation_class.value.capitalize()} limit reached, using {credit_cost} credit(s)"
        else:
            decision.reason = f"{operation_class.value.capitalize()} generation limit reached"
        return decision

    def usage_snapshot(
        self,
        identity: Optional[Identity],
        profile: Optional[Profile],
        now: Optional[datetime] = None,
    ) -> UsageSnapshot:
        """Decisions for both classes, as shown on the account page."""
        quick = self.check_usage(identity, profile, OperationClass.QUICK, now=now)
        premium = self.check_usage(identity, profile, OperationClass.PREMIUM, now=now)
        return UsageSnapshot(
            authenticated=isinstance(identity, AuthenticatedIdentity),
            tier=quick.tier,
            tier_name=quick.tier_name,
            watermark_free=quick.watermark_free,
            credit_balance=quick.credit_balance,
            quick=quick,
            premium=premium,
        )

    # ------------------------------------------------------------------
    # Increment
    # ------------------------------------------------------------------

    def increment_usage(
        self,
        identity: Optional[Identity],
        profile: Optional[Profile],
        operation_class: OperationClass,
        use_credit: bool = False,
        credit_cost: int = 0,
        now: Optional[datetime] = None,
    ) -> IncrementResult:
        """
        Compute the counters after one successful generation.

        Anonymous identities are incremented in the in-memory store right
        away; ``should_update_db`` tells the caller whether the session
        counters must also be written to the persistent store. For
        authenticated identities nothing is written: ``profile_updates``
        lists the columns to persist and ``profile`` is left untouched.
        """
        operation_class = OperationClass(operation_class)
        now = now or _utcnow()
        tier_id = self.resolve_tier(identity, profile)

        if isinstance(identity, AnonymousIdentity):
            counts = self.anonymous_store.increment(identity, operation_class)
            return IncrementResult(
                success=True,
                tier=tier_id,
                operation_class=operation_class,
                new_quick_count=counts.quick_used,
                new_premium_count=counts.premium_used,
                new_generation_count=counts.quick_used + counts.premium_used,
                should_update_db=identity.has_durable_session,
            )

        if identity is None:
            logger.warning("Usage increment refused: no identity to count against")
            return IncrementResult(
                success=False,
                error=UsageErrorCode.IDENTITY_REQUIRED,
                tier=tier_id,
                operation_class=operation_class,
            )

        counters = self.counters_for(identity, profile)
        balance = counters.credit_balance
        generation_count = profile.generation_count if profile else 0
        result = IncrementResult(
            success=True,
            tier=tier_id,
            operation_class=operation_class,
            new_quick_count=counters.quick_used,
            new_premium_count=counters.premium_used,
            new_monthly_count=counters.monthly_used,
            new_generation_count=generation_count,
            new_credit_balance=balance,
            monthly_reset_at=profile.monthly_reset_at if profile else None,
        )

        if use_credit:
            # Second, authoritative check: the profile may have changed since check_usage.
            if balance < credit_cost:
                logger.info(
                    f"Credit increment refused for user {identity.user_id}: "
                    f"balance {balance} < cost {credit_cost}"
                )
                result.success = False
                result.error = UsageErrorCode.INSUFFICIENT_CREDITS
                return result

            # Overflow is funded by credits; the standing quota counters stay put.
            result.new_credit_balance = max(0, balance - credit_cost)
            result.credits_used = credit_cost
            result.new_generation_count = generation_count + 1
            updates: Dict[str, Any] = {
                "credit_balance": result.new_credit_balance,
                "generation_count": result.new_generation_count,
            }
        else:
            result.new_generation_count = generation_count + 1
            updates = {"generation_count": result.new_generation_count}
            tier = get_tier_limits(tier_id)

            if tier.has_monthly_pool:
                reset_due = is_monthly_reset_due(profile, now)
                monthly_used = 0 if reset_due else counters.monthly_used
                result.new_monthly_count = monthly_used + 1
                updates["monthly_generation_count"] = result.new_monthly_count
                if reset_due or result.monthly_reset_at is None:
                    result.monthly_reset_at = next_monthly_reset(_as_aware(now))
                    updates["monthly_reset_at"] = result.monthly_reset_at.isoformat()
            elif operation_class == OperationClass.QUICK:
                result.new_quick_count = counters.quick_used + 1
                updates["quick_count"] = result.new_quick_count
            else:
                result.new_premium_count = counters.premium_used + 1
                updates["premium_count"] = result.new_premium_count

        # Without a profile row there is nothing safe to overwrite.
        result.should_update_db = profile is not None
        result.profile_updates = updates if profile is not None else {}
        return result


# Global accountant instance
usage_accountant = UsageAccountant()
