"""
Supabase-backed external stores used by the rate limit interceptor.

- ``profiles``: tier, subscription status, usage counters and credits of
  authenticated users
- ``usage_counters``: persistent quick/premium counts of anonymous sessions,
  keyed by the anon_id cookie value

Both stores raise ``UpstreamUnavailableError`` on any Supabase failure; the
interceptor decides how to degrade.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from ..core.config import settings
from ..core.errors import UpstreamUnavailableError
from ..core.security import hash_signal, ip_prefix
from ..core.supabase_client import supabase_client
from ..schemas.identity import OperationClass
from ..schemas.usage import AnonymousCounts, Profile

logger = logging.getLogger(__name__)


class SupabaseProfileStore:
    """Reads and updates rows of the ``profiles`` table."""

    TABLE = "profiles"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or supabase_client.service_client

    async def get(self, user_id: str) -> Optional[Profile]:
        """
        Get a user's profile.
        Returns None if the user has no profile row.
        """
        try:
            # Use .limit(1) instead of .single() to avoid exception on no results
            result = self.client.table(self.TABLE).select("*").eq("id", user_id).limit(1).execute()
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to fetch profile: {e}") from e

        if result.data and len(result.data) > 0:
            return Profile(**result.data[0])
        return None

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Persist counter columns computed by the usage accountant."""
        if not fields:
            return
        payload = dict(fields)
        payload["updated_at"] = datetime.now(timezone.utc).isoformat()
        try:
            self.client.table(self.TABLE).update(payload).eq("id", user_id).execute()
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to update profile: {e}") from e


class SupabaseAnonymousCounterStore:
    """
    Persistent quick/premium counts for anonymous sessions.

    Increments go through the ``increment_usage_counter`` database function,
    which upserts atomically, restarts the counting window once it is older
    than ``window_seconds`` and records coarse abuse signals (IP prefix and
    hashed User-Agent).
    """

    TABLE = "usage_counters"
    INCREMENT_RPC = "increment_usage_counter"

    def __init__(self, client=None, window_seconds: int = 24 * 60 * 60):
        self._client = client
        self.window_seconds = window_seconds

    @property
    def client(self):
        return self._client or supabase_client.service_client

    async def get(self, session_token: str, now: Optional[datetime] = None) -> Optional[AnonymousCounts]:
        """Counts of the current window, or None when the session has no row."""
        try:
            result = self.client.table(self.TABLE).select(
                "quick_count, premium_count, window_started_at"
            ).eq("anon_id", session_token).limit(1).execute()
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to fetch anonymous usage: {e}") from e

        if not result.data:
            return None

        row = result.data[0]
        if self._window_expired(row.get("window_started_at"), now or datetime.now(timezone.utc)):
            return AnonymousCounts()
        return AnonymousCounts(
            quick_used=row.get("quick_count") or 0,
            premium_used=row.get("premium_count") or 0,
        )

    async def increment(
        self,
        session_token: str,
        operation_class: OperationClass,
        network_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AnonymousCounts:
        """Atomically count one generation and return the persisted counts."""
        try:
            result = self.client.rpc(self.INCREMENT_RPC, {
                "p_user_id": None,
                "p_anon_id": session_token,
                "p_model_type": OperationClass(operation_class).value,
                "p_ip_prefix": ip_prefix(network_address),
                "p_ua_hash": hash_signal(user_agent),
                "p_fp_hash": None,
                "p_window_seconds": self.window_seconds,
            }).execute()
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to persist anonymous usage: {e}") from e

        if not result.data:
            raise UpstreamUnavailableError("No data returned from usage counter increment")

        row = result.data[0]
        return AnonymousCounts(
            quick_used=row.get("new_quick") or 0,
            premium_used=row.get("new_premium") or 0,
        )

    def _window_expired(self, window_started_at: Any, now: datetime) -> bool:
        if not window_started_at:
            return False
        if isinstance(window_started_at, str):
            try:
                window_started_at = datetime.fromisoformat(window_started_at.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable usage window start: {window_started_at!r}")
                return False
        if window_started_at.tzinfo is None:
            window_started_at = window_started_at.replace(tzinfo=timezone.utc)
        return window_started_at < now - timedelta(seconds=self.window_seconds)


# Global store instances
profile_store = SupabaseProfileStore()
anonymous_counter_store = SupabaseAnonymousCounterStore(
    window_seconds=settings.anon_counter_window_seconds,
)
