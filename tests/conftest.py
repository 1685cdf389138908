"""
Shared fixtures.

Settings are read from the environment at import time, so the required
values are set here before any swapbooth module is imported.
"""
import os
import uuid
from datetime import datetime, timezone

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-with-enough-length-1234")
os.environ.setdefault("ADMIN_PASSWORD", "correct-horse-battery-staple")

import pytest
from unittest.mock import AsyncMock

from swapbooth.schemas.identity import AnonymousIdentity, AuthenticatedIdentity
from swapbooth.schemas.usage import AnonymousCounts, Profile
from swapbooth.services.anonymous_usage import AnonymousUsageStore
from swapbooth.services.credit_ledger import CreditLedger
from swapbooth.services.usage_accountant import UsageAccountant


class FakeClock:
    """Monotonic clock the tests can move forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def anonymous_store(clock):
    return AnonymousUsageStore(
        cache_ttl_seconds=60,
        fallback_ttl_seconds=24 * 60 * 60,
        fallback_max_entries=10,
        clock=clock,
    )


@pytest.fixture
def accountant(anonymous_store):
    return UsageAccountant(anonymous_store=anonymous_store, ledger=CreditLedger())


@pytest.fixture
def now():
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anon_identity():
    return AnonymousIdentity(network_address="203.0.113.7", session_token=str(uuid.uuid4()))


@pytest.fixture
def ip_only_identity():
    return AnonymousIdentity(network_address="198.51.100.23")


@pytest.fixture
def user_identity():
    return AuthenticatedIdentity(user_id=str(uuid.uuid4()))


@pytest.fixture
def free_profile(user_identity):
    return Profile(id=user_identity.user_id, tier="free")


@pytest.fixture
def base_profile(user_identity):
    return Profile(
        id=user_identity.user_id,
        tier="base",
        subscription_status="active",
        monthly_generation_count=0,
        monthly_reset_at=datetime(2026, 4, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def profile_store():
    store = AsyncMock()
    store.get.return_value = None
    store.update.return_value = None
    return store


@pytest.fixture
def counter_store():
    store = AsyncMock()
    store.get.return_value = None
    store.increment.return_value = AnonymousCounts()
    return store
