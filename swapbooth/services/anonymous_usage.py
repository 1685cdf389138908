"""
Anonymous usage tracking.

Two in-process maps sit in front of the persistent ``usage_counters`` table:

- a short-lived cache keyed by the anonymous session token (anon_id cookie)
- a longer-lived fallback keyed by client IP, used when the caller has no
  session token or the token is not cached yet

The persistent store is the source of truth across restarts; these maps
only save a round-trip and are allowed to be stale. The IP fallback is
shared by every anonymous caller behind the same address and is never
written back to the database.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..core.config import settings
from ..schemas.identity import AnonymousIdentity, OperationClass
from ..schemas.usage import AnonymousCounts

logger = logging.getLogger(__name__)


@dataclass
class _UsageEntry:
    quick_used: int
    premium_used: int
    written_at: float

    def to_counts(self) -> AnonymousCounts:
        return AnonymousCounts(quick_used=self.quick_used, premium_used=self.premium_used)


class AnonymousUsageStore:
    """In-memory quick/premium counters for anonymous identities."""

    def __init__(
        self,
        cache_ttl_seconds: float = 60,
        fallback_ttl_seconds: float = 24 * 60 * 60,
        fallback_max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache_ttl_seconds = cache_ttl_seconds
        self.fallback_ttl_seconds = fallback_ttl_seconds
        self.fallback_max_entries = fallback_max_entries
        self._clock = clock
        self._cache: Dict[str, _UsageEntry] = {}
        self._fallback: Dict[str, _UsageEntry] = {}
        self._lock = threading.Lock()
        self._sweeper_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_counts(self, identity: AnonymousIdentity) -> AnonymousCounts:
        """Counts for an anonymous identity: token cache, then IP fallback, then zeros."""
        with self._lock:
            entry = self._lookup(identity, self._clock())
        return entry.to_counts() if entry else AnonymousCounts()

    def is_cached(self, session_token: Optional[str]) -> bool:
        """Whether a live cache entry exists for the session token."""
        if not session_token:
            return False
        with self._lock:
            entry = self._cache.get(session_token)
            return entry is not None and not self._expired(entry, self.cache_ttl_seconds, self._clock())

    def session_counts(self, session_token: Optional[str]) -> Optional[AnonymousCounts]:
        """
        Counts this process holds for the session token itself, expired or not.

        Never consults the IP fallback. Returns None once the entry is swept.
        """
        if not session_token:
            return None
        with self._lock:
            entry = self._cache.get(session_token)
            return entry.to_counts() if entry else None

    def _lookup(self, identity: AnonymousIdentity, now: float) -> Optional[_UsageEntry]:
        if identity.session_token:
            entry = self._cache.get(identity.session_token)
            if entry and not self._expired(entry, self.cache_ttl_seconds, now):
                return entry
        entry = self._fallback.get(identity.network_address)
        if entry and not self._expired(entry, self.fallback_ttl_seconds, now):
            return entry
        return None

    @staticmethod
    def _expired(entry: _UsageEntry, ttl: float, now: float) -> bool:
        return now - entry.written_at >= ttl

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def prime(self, session_token: str, quick_used: int, premium_used: int) -> None:
        """Load counts read from the persistent store into the token cache."""
        with self._lock:
            self._cache[session_token] = _UsageEntry(quick_used, premium_used, self._clock())

    def increment(self, identity: AnonymousIdentity, operation_class: OperationClass) -> AnonymousCounts:
        """
        Atomically add one generation of ``operation_class`` and return the new counts.

        Writes the token cache when the identity has a session token and
        always refreshes the IP fallback.
        """
        operation_class = OperationClass(operation_class)
        with self._lock:
            now = self._clock()
            current = self._lookup(identity, now)
            quick_used = current.quick_used if current else 0
            premium_used = current.premium_used if current else 0

            if operation_class == OperationClass.QUICK:
                quick_used += 1
            else:
                premium_used += 1

            if identity.session_token:
                self._cache[identity.session_token] = _UsageEntry(quick_used, premium_used, now)
            self._fallback[identity.network_address] = _UsageEntry(quick_used, premium_used, now)

            if len(self._fallback) > self.fallback_max_entries:
                self._compact_fallback()

        return AnonymousCounts(quick_used=quick_used, premium_used=premium_used)

    def reset(self, identity: AnonymousIdentity) -> None:
        """Forget everything known about an anonymous identity."""
        with self._lock:
            if identity.session_token:
                self._cache.pop(identity.session_token, None)
            self._fallback.pop(identity.network_address, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._fallback.clear()

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _compact_fallback(self) -> int:
        """Drop the oldest half of the IP fallback by last-write time. Caller holds the lock."""
        ordered = sorted(self._fallback.items(), key=lambda item: item[1].written_at)
        evict = ordered[: len(ordered) // 2]
        for address, _ in evict:
            del self._fallback[address]
        logger.warning(f"Anonymous fallback compacted: evicted {len(evict)} oldest addresses")
        return len(evict)

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict expired cache and fallback entries. Returns the number evicted."""
        with self._lock:
            now = self._clock() if now is None else now
            expired_tokens = [
                token for token, entry in self._cache.items()
                if self._expired(entry, self.cache_ttl_seconds, now)
            ]
            for token in expired_tokens:
                del self._cache[token]

            expired_addresses = [
                address for address, entry in self._fallback.items()
                if self._expired(entry, self.fallback_ttl_seconds, now)
            ]
            for address in expired_addresses:
                del self._fallback[address]

            evicted = len(expired_tokens) + len(expired_addresses)
            if len(self._fallback) > self.fallback_max_entries:
                evicted += self._compact_fallback()

        if evicted:
            logger.debug(f"Anonymous usage sweep evicted {evicted} entries")
        return evicted

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep on a fixed timer until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def start_sweeper(self, interval_seconds: float) -> asyncio.Task:
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(self.run_sweeper(interval_seconds))
        return self._sweeper_task

    async def stop_sweeper(self) -> None:
        task, self._sweeper_task = self._sweeper_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "cached_sessions": len(self._cache),
                "fallback_addresses": len(self._fallback),
            }


# Global store instance
anonymous_usage_store = AnonymousUsageStore(
    cache_ttl_seconds=settings.anon_cache_ttl_seconds,
    fallback_ttl_seconds=settings.anon_fallback_ttl_seconds,
    fallback_max_entries=settings.anon_fallback_max_entries,
)
