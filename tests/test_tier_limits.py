"""
Tests for the tier catalog and credit ledger.
"""
import pytest

from swapbooth.core.errors import UnknownTierError
from swapbooth.core.tier_limits import (
    CREDIT_COSTS,
    TIER_LIMITS,
    get_tier_limits,
    get_upgrade_message,
)
from swapbooth.schemas.identity import OperationClass
from swapbooth.schemas.usage import Profile
from swapbooth.services.credit_ledger import CreditLedger


def test_free_tier_has_separate_quotas():
    tier = get_tier_limits("free")
    assert tier.quick_limit == 5
    assert tier.premium_limit == 1
    assert tier.monthly_limit is None
    assert tier.can_purchase_credits is True
    assert tier.watermark_free is False


def test_anonymous_tier_cannot_buy_credits():
    tier = get_tier_limits("anonymous")
    assert tier.quick_limit == 5
    assert tier.premium_limit == 1
    assert tier.can_purchase_credits is False


@pytest.mark.parametrize("tier_id", ["base", "paid"])
def test_subscription_tiers_share_monthly_pool(tier_id):
    tier = get_tier_limits(tier_id)
    assert tier.monthly_limit == 50
    assert tier.has_monthly_pool
    assert tier.watermark_free is True


def test_unknown_tier_fails_fast():
    with pytest.raises(UnknownTierError):
        get_tier_limits("enterprise")


def test_tier_limits_are_immutable():
    with pytest.raises(Exception):
        TIER_LIMITS["free"].quick_limit = 100


def test_premium_costs_more_than_quick():
    assert CREDIT_COSTS[OperationClass.QUICK] == 1
    assert CREDIT_COSTS[OperationClass.PREMIUM] == 2


def test_upgrade_message_by_tier():
    assert "Sign up" in get_upgrade_message("anonymous")
    assert "credits" in get_upgrade_message("free")
    assert get_upgrade_message("unknown") == "Upgrade your plan for more generations."


class TestCreditLedger:
    """Test suite for CreditLedger."""

    def test_cost_accepts_plain_strings(self):
        ledger = CreditLedger()
        assert ledger.cost("quick") == 1
        assert ledger.cost(OperationClass.PREMIUM) == 2

    def test_missing_profile_has_zero_balance(self):
        assert CreditLedger().balance_of(None) == 0

    def test_null_balance_is_zero(self):
        profile = Profile(id="user-1", credit_balance=None)
        assert CreditLedger().balance_of(profile) == 0

    def test_can_afford(self):
        ledger = CreditLedger()
        profile = Profile(id="user-1", credit_balance=1)
        assert ledger.can_afford(profile, OperationClass.QUICK) is True
        assert ledger.can_afford(profile, OperationClass.PREMIUM) is False
