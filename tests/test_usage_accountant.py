"""
Tests for UsageAccountant: tier resolution, decisions and increments.
"""
from datetime import datetime, timezone

import pytest

from swapbooth.core.errors import UsageErrorCode
from swapbooth.schemas.identity import AuthenticatedIdentity, OperationClass
from swapbooth.schemas.usage import Profile
from swapbooth.services.usage_accountant import (
    is_monthly_reset_due,
    next_monthly_reset,
)


def _apply(profile: Profile, updates: dict) -> Profile:
    """Persist profile_updates the way the profile store would."""
    return profile.model_copy(update=updates)


class TestResolveTier:
    """Test suite for tier resolution."""

    def test_missing_identity_is_anonymous(self, accountant):
        assert accountant.resolve_tier(None, None) == "anonymous"

    def test_anonymous_identity_ignores_profile(self, accountant, anon_identity, base_profile):
        assert accountant.resolve_tier(anon_identity, base_profile) == "anonymous"

    def test_authenticated_without_profile_is_free(self, accountant, user_identity):
        assert accountant.resolve_tier(user_identity, None) == "free"

    def test_base_tier(self, accountant, user_identity):
        profile = Profile(id=user_identity.user_id, tier="base")
        assert accountant.resolve_tier(user_identity, profile) == "base"

    def test_paid_tier(self, accountant, user_identity):
        profile = Profile(id=user_identity.user_id, tier="paid")
        assert accountant.resolve_tier(user_identity, profile) == "paid"

    def test_active_subscription_is_paid(self, accountant, user_identity):
        profile = Profile(id=user_identity.user_id, tier="free", subscription_status="active")
        assert accountant.resolve_tier(user_identity, profile) == "paid"

    @pytest.mark.parametrize("status", ["trialing", "Active", "canceled", None])
    def test_other_statuses_are_free(self, accountant, user_identity, status):
        profile = Profile(id=user_identity.user_id, tier="free", subscription_status=status)
        assert accountant.resolve_tier(user_identity, profile) == "free"

    def test_tier_comparison_is_case_sensitive(self, accountant, user_identity):
        profile = Profile(id=user_identity.user_id, tier="Base")
        assert accountant.resolve_tier(user_identity, profile) == "free"


class TestFreeTier:
    """Quick and premium quotas are tracked separately."""

    def test_five_quick_then_blocked(self, accountant, user_identity, free_profile, now):
        profile = free_profile
        for _ in range(5):
            decision = accountant.check_usage(user_identity, profile, OperationClass.QUICK, now=now)
            assert decision.can_generate is True
            assert decision.use_credit is False
            result = accountant.increment_usage(user_identity, profile, OperationClass.QUICK, now=now)
            profile = _apply(profile, result.profile_updates)

        assert profile.quick_count == 5
        assert profile.generation_count == 5

        quick = accountant.check_usage(user_identity, profile, OperationClass.QUICK, now=now)
        assert quick.can_generate is False
        assert quick.quick_remaining == 0
        assert quick.premium_remaining == 1

        premium = accountant.check_usage(user_identity, profile, OperationClass.PREMIUM, now=now)
        assert premium.can_generate is True

    def test_exhausted_quota_falls_back_to_credits(self, accountant, user_identity, now):
        profile = Profile(id=user_identity.user_id, tier="free", premium_count=1, credit_balance=2)
        decision = accountant.check_usage(user_identity, profile, OperationClass.PREMIUM, now=now)

        assert decision.can_generate is True
        assert decision.use_credit is True
        assert decision.credit_cost == 2

    def test_exhausted_quota_without_credits_is_blocked(self, accountant, user_identity, now):
        profile = Profile(id=user_identity.user_id, tier="free", premium_count=1, credit_balance=1)
        decision = accountant.check_usage(user_identity, profile, OperationClass.PREMIUM, now=now)

        assert decision.can_generate is False
        assert decision.remaining == 0

    def test_credit_overflow_leaves_quota_counters(self, accountant, user_identity, now):
        profile = Profile(
            id=user_identity.user_id, tier="free", quick_count=5, generation_count=5, credit_balance=4
        )
        result = accountant.increment_usage(
            user_identity, profile, OperationClass.QUICK, use_credit=True, credit_cost=1, now=now
        )

        assert result.success is True
        assert result.new_quick_count == 5
        assert result.new_credit_balance == 3
        assert result.credits_used == 1
        assert result.new_generation_count == 6
        assert result.profile_updates == {"credit_balance": 3, "generation_count": 6}

    def test_over_limit_counters_report_zero_remaining(self, accountant, user_identity, now):
        profile = Profile(id=user_identity.user_id, tier="free", quick_count=9)
        decision = accountant.check_usage(user_identity, profile, OperationClass.QUICK, now=now)
        assert decision.remaining == 0
        assert decision.quick_remaining == 0


class TestSubscriptionTier:
    """Base and paid tiers draw from one monthly pool."""

    def test_both_classes_share_the_pool(self, accountant, user_identity, base_profile, now):
        profile = base_profile
        for op in (OperationClass.QUICK, OperationClass.PREMIUM, OperationClass.PREMIUM):
            result = accountant.increment_usage(user_identity, profile, op, now=now)
            profile = _apply(profile, result.profile_updates)

        assert profile.monthly_generation_count == 3
        assert profile.quick_count == 0
        assert profile.premium_count == 0

        decision = accountant.check_usage(user_identity, profile, OperationClass.QUICK, now=now)
        assert decision.used == 3
        assert decision.limit == 50
        assert decision.remaining == 47
        assert decision.watermark_free is True

    def test_premium_over_pool_spends_two_credits(self, accountant, user_identity, base_profile, now):
        profile = base_profile.model_copy(update={"monthly_generation_count": 50, "credit_balance": 3})

        decision = accountant.check_usage(user_identity, profile, OperationClass.PREMIUM, now=now)
        assert decision.can_generate is True
        assert decision.use_credit is True
        assert decision.credit_cost == 2

        result = accountant.increment_usage(
            user_identity,
            profile,
            OperationClass.PREMIUM,
            use_credit=decision.use_credit,
            credit_cost=decision.credit_cost,
            now=now,
        )
        assert result.success is True
        assert result.new_credit_balance == 1
        assert result.new_monthly_count == 50
        assert "monthly_generation_count" not in result.profile_updates

    def test_pool_exhausted_without_credits(self, accountant, user_identity, base_profile, now):
        profile = base_profile.model_copy(update={"monthly_generation_count": 50, "credit_balance": 1})
        decision = accountant.check_usage(user_identity, profile, OperationClass.PREMIUM, now=now)
        assert decision.can_generate is False
        assert decision.remaining == 0

    def test_due_reset_zeroes_effective_usage(self, accountant, user_identity, base_profile, now):
        profile = base_profile.model_copy(
            update={
                "monthly_generation_count": 50,
                "monthly_reset_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
            }
        )
        decision = accountant.check_usage(user_identity, profile, OperationClass.QUICK, now=now)
        assert decision.monthly_reset_due is True
        assert decision.used == 0
        assert decision.use_credit is False

        result = accountant.increment_usage(user_identity, profile, OperationClass.QUICK, now=now)
        assert result.new_monthly_count == 1
        assert result.monthly_reset_at == datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)
        assert result.profile_updates["monthly_reset_at"] == "2026-04-15T12:00:00+00:00"

    def test_reset_exactly_at_boundary_is_due(self, base_profile, now):
        profile = base_profile.model_copy(update={"monthly_reset_at": now})
        assert is_monthly_reset_due(profile, now) is True

    def test_missing_reset_timestamp_is_initialised(self, accountant, user_identity, base_profile, now):
        profile = base_profile.model_copy(update={"monthly_reset_at": None})
        result = accountant.increment_usage(user_identity, profile, OperationClass.QUICK, now=now)
        assert "monthly_reset_at" in result.profile_updates

    def test_future_reset_is_not_rewritten(self, accountant, user_identity, base_profile, now):
        result = accountant.increment_usage(user_identity, base_profile, OperationClass.QUICK, now=now)
        assert "monthly_reset_at" not in result.profile_updates
        assert result.monthly_reset_at == base_profile.monthly_reset_at

    def test_naive_reset_timestamp_is_utc(self, base_profile, now):
        profile = base_profile.model_copy(update={"monthly_reset_at": datetime(2026, 3, 15, 11, 0)})
        assert is_monthly_reset_due(profile, now) is True


class TestIncrementEdgeCases:
    """Test suite for refused and partial increments."""

    def test_insufficient_credits_is_refused(self, accountant, user_identity, now):
        profile = Profile(id=user_identity.user_id, tier="free", quick_count=5, credit_balance=0)
        result = accountant.increment_usage(
            user_identity, profile, OperationClass.QUICK, use_credit=True, credit_cost=1, now=now
        )
        assert result.success is False
        assert result.error == UsageErrorCode.INSUFFICIENT_CREDITS
        assert result.new_credit_balance == 0
        assert result.new_quick_count == 5
        assert result.profile_updates == {}

    def test_missing_profile_is_not_persisted(self, accountant, user_identity, now):
        result = accountant.increment_usage(user_identity, None, OperationClass.QUICK, now=now)
        assert result.success is True
        assert result.new_quick_count == 1
        assert result.should_update_db is False
        assert result.profile_updates == {}

    def test_profile_is_not_mutated(self, accountant, user_identity, free_profile, now):
        accountant.increment_usage(user_identity, free_profile, OperationClass.QUICK, now=now)
        assert free_profile.quick_count == 0

    def test_missing_identity_is_reported(self, accountant, now):
        result = accountant.increment_usage(None, None, OperationClass.QUICK, now=now)

        assert result.success is False
        assert result.error == UsageErrorCode.IDENTITY_REQUIRED
        assert result.should_update_db is False
        assert result.profile_updates == {}

    def test_string_operation_class(self, accountant, user_identity, free_profile, now):
        decision = accountant.check_usage(user_identity, free_profile, "premium", now=now)
        assert decision.operation_class == OperationClass.PREMIUM


class TestAnonymous:
    """Anonymous usage flows through the in-memory store."""

    def test_increment_writes_store(self, accountant, anonymous_store, anon_identity, now):
        result = accountant.increment_usage(anon_identity, None, OperationClass.PREMIUM, now=now)

        assert result.tier == "anonymous"
        assert result.new_premium_count == 1
        assert result.should_update_db is True
        assert anonymous_store.get_counts(anon_identity).premium_used == 1

    def test_ip_only_identity_is_not_persisted(self, accountant, ip_only_identity, now):
        result = accountant.increment_usage(ip_only_identity, None, OperationClass.QUICK, now=now)
        assert result.should_update_db is False

    def test_premium_blocked_after_one(self, accountant, anon_identity, now):
        accountant.increment_usage(anon_identity, None, OperationClass.PREMIUM, now=now)
        decision = accountant.check_usage(anon_identity, None, OperationClass.PREMIUM, now=now)

        assert decision.can_generate is False
        assert decision.use_credit is False
        assert decision.quick_remaining == 5

    def test_anonymous_never_uses_credits(self, accountant, anonymous_store, anon_identity, now):
        anonymous_store.prime(anon_identity.session_token, 5, 1)
        decision = accountant.check_usage(anon_identity, None, OperationClass.QUICK, now=now)
        assert decision.can_generate is False
        assert decision.credit_balance == 0


def test_snapshot_reports_both_classes(accountant, user_identity, free_profile, now):
    snapshot = accountant.usage_snapshot(user_identity, free_profile, now=now)
    assert snapshot.authenticated is True
    assert snapshot.tier == "free"
    assert snapshot.quick.limit == 5
    assert snapshot.premium.limit == 1


def test_snapshot_for_anonymous(accountant, anon_identity, now):
    snapshot = accountant.usage_snapshot(anon_identity, None, now=now)
    assert snapshot.authenticated is False
    assert snapshot.tier_name == accountant.check_usage(anon_identity, None, "quick", now=now).tier_name


@pytest.mark.parametrize(
    "now, expected",
    [
        (datetime(2026, 1, 31, tzinfo=timezone.utc), datetime(2026, 2, 28, tzinfo=timezone.utc)),
        (datetime(2024, 1, 31, tzinfo=timezone.utc), datetime(2024, 2, 29, tzinfo=timezone.utc)),
        (datetime(2026, 12, 10, 8, 30, tzinfo=timezone.utc), datetime(2027, 1, 10, 8, 30, tzinfo=timezone.utc)),
    ],
)
def test_next_monthly_reset(now, expected):
    assert next_monthly_reset(now) == expected


def test_authenticated_identity_is_hashable():
    assert AuthenticatedIdentity("a") == AuthenticatedIdentity("a")


def test_anonymous_classes_are_independent(accountant, anon_identity, now):
    for _ in range(5):
        assert accountant.check_usage(anon_identity, None, OperationClass.QUICK, now=now).can_generate
        accountant.increment_usage(anon_identity, None, OperationClass.QUICK, now=now)

    quick = accountant.check_usage(anon_identity, None, OperationClass.QUICK, now=now)
    premium = accountant.check_usage(anon_identity, None, OperationClass.PREMIUM, now=now)
    assert quick.can_generate is False
    assert premium.can_generate is True

    accountant.increment_usage(anon_identity, None, OperationClass.PREMIUM, now=now)
    premium = accountant.check_usage(anon_identity, None, OperationClass.PREMIUM, now=now)
    assert premium.can_generate is False
    assert premium.remaining == 0
