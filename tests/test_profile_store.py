"""
Tests for the Supabase-backed stores, with the client chain mocked.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from swapbooth.core.errors import UpstreamUnavailableError
from swapbooth.core.security import hash_signal
from swapbooth.schemas.identity import OperationClass
from swapbooth.schemas.usage import AnonymousCounts
from swapbooth.services.profile_store import (
    SupabaseAnonymousCounterStore,
    SupabaseProfileStore,
)


def client_returning(data):
    client = MagicMock()
    query = client.table.return_value
    query.select.return_value = query
    query.eq.return_value = query
    query.limit.return_value = query
    query.update.return_value = query
    query.execute.return_value = MagicMock(data=data)
    return client


@pytest.mark.asyncio
async def test_get_profile():
    client = client_returning([{"id": "u1", "tier": "base", "credit_balance": None, "email": "x@y.z"}])

    profile = await SupabaseProfileStore(client=client).get("u1")

    assert profile.tier == "base"
    assert profile.credit_balance == 0
    client.table.assert_called_with("profiles")


@pytest.mark.asyncio
async def test_missing_profile():
    assert await SupabaseProfileStore(client=client_returning([])).get("u1") is None


@pytest.mark.asyncio
async def test_profile_errors_are_wrapped():
    client = MagicMock()
    client.table.side_effect = RuntimeError("connection reset")

    with pytest.raises(UpstreamUnavailableError):
        await SupabaseProfileStore(client=client).get("u1")


@pytest.mark.asyncio
async def test_update_stamps_updated_at():
    client = client_returning([])

    await SupabaseProfileStore(client=client).update("u1", {"quick_count": 3})

    payload = client.table.return_value.update.call_args[0][0]
    assert payload["quick_count"] == 3
    assert "updated_at" in payload


@pytest.mark.asyncio
async def test_empty_update_is_skipped():
    client = client_returning([])
    await SupabaseProfileStore(client=client).update("u1", {})
    client.table.assert_not_called()


@pytest.mark.asyncio
async def test_anonymous_counts():
    client = client_returning([{"quick_count": 2, "premium_count": None}])

    counts = await SupabaseAnonymousCounterStore(client=client).get("anon-1")

    assert counts == AnonymousCounts(quick_used=2, premium_used=0)
    client.table.return_value.eq.assert_called_with("anon_id", "anon-1")


@pytest.mark.asyncio
async def test_anonymous_counts_reset_after_window(now):
    client = client_returning([{
        "quick_count": 4,
        "premium_count": 1,
        "window_started_at": (now - timedelta(hours=25)).isoformat(),
    }])

    counts = await SupabaseAnonymousCounterStore(client=client).get("anon-1", now=now)

    assert counts == AnonymousCounts()


@pytest.mark.asyncio
async def test_anonymous_counts_inside_window(now):
    client = client_returning([{
        "quick_count": 4,
        "premium_count": 1,
        "window_started_at": (now - timedelta(hours=23)).isoformat().replace("+00:00", "Z"),
    }])

    counts = await SupabaseAnonymousCounterStore(client=client).get("anon-1", now=now)

    assert counts == AnonymousCounts(quick_used=4, premium_used=1)


@pytest.mark.asyncio
async def test_anonymous_increment_calls_counter_function():
    client = MagicMock()
    client.rpc.return_value.execute.return_value = MagicMock(data=[{"new_quick": 3, "new_premium": 1}])
    store = SupabaseAnonymousCounterStore(client=client, window_seconds=3600)

    counts = await store.increment(
        "anon-1", OperationClass.PREMIUM, network_address="203.0.113.7", user_agent="Mozilla/5.0"
    )

    assert counts == AnonymousCounts(quick_used=3, premium_used=1)
    name, params = client.rpc.call_args[0]
    assert name == "increment_usage_counter"
    assert params["p_user_id"] is None
    assert params["p_anon_id"] == "anon-1"
    assert params["p_model_type"] == "premium"
    assert params["p_ip_prefix"] == "203.0.113.0"
    assert params["p_ua_hash"] == hash_signal("Mozilla/5.0")
    assert params["p_window_seconds"] == 3600
    client.table.assert_not_called()


@pytest.mark.asyncio
async def test_anonymous_increment_without_signals():
    client = MagicMock()
    client.rpc.return_value.execute.return_value = MagicMock(data=[{"new_quick": 1, "new_premium": None}])

    counts = await SupabaseAnonymousCounterStore(client=client).increment("anon-1", "quick")

    assert counts == AnonymousCounts(quick_used=1)
    params = client.rpc.call_args[0][1]
    assert params["p_ip_prefix"] is None
    assert params["p_ua_hash"] is None


@pytest.mark.asyncio
async def test_anonymous_increment_errors_are_wrapped():
    client = MagicMock()
    client.rpc.return_value.execute.side_effect = RuntimeError("timeout")

    with pytest.raises(UpstreamUnavailableError):
        await SupabaseAnonymousCounterStore(client=client).increment("anon-1", OperationClass.QUICK)


@pytest.mark.asyncio
async def test_anonymous_increment_without_row_is_an_error():
    client = MagicMock()
    client.rpc.return_value.execute.return_value = MagicMock(data=[])

    with pytest.raises(UpstreamUnavailableError):
        await SupabaseAnonymousCounterStore(client=client).increment("anon-1", OperationClass.QUICK)
