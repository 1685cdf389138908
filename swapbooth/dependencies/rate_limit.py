"""
Generation rate limiting based on the caller's tier and usage.

Flow for one generation request:
1. ``check``: admin bypass, profile fetch, quota/credit decision
2. a pending generation is recorded and the expensive operation runs
3. ``commit``: only after success, compute the new counters and persist them
4. the generation is completed with its result, or failed with the error

Bookkeeping failures never block a request: a profile that cannot be read
is treated as "free tier, no profile", and failed writes are only logged.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from ..core.config import settings
from ..core.errors import UpstreamUnavailableError
from ..core.tier_limits import ADMIN_TIER, get_upgrade_message
from ..schemas.generations import Generation
from ..schemas.identity import (
    AnonymousIdentity,
    AuthenticatedIdentity,
    Identity,
    OperationClass,
)
from ..schemas.usage import (
    AnonymousCounts,
    IncrementResult,
    LimitReachedResponse,
    Profile,
    UsageDecision,
    UsageSnapshot,
)
from ..services.generation_service import GenerationService, generation_service
from ..services.profile_store import (
    SupabaseAnonymousCounterStore,
    SupabaseProfileStore,
    anonymous_counter_store,
    profile_store,
)
from ..services.usage_accountant import UsageAccountant, usage_accountant

logger = logging.getLogger(__name__)


class UsageGate(BaseModel):
    """Outcome of the pre-generation check, handed back to ``commit``."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    allowed: bool
    identity: Any
    operation_class: OperationClass
    decision: UsageDecision
    profile: Optional[Profile] = None
    is_admin: bool = False
    denial: Optional[LimitReachedResponse] = None


class MeteredResult(BaseModel):
    """Outcome of ``RateLimitInterceptor.run``."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    allowed: bool
    succeeded: bool = False
    denial: Optional[LimitReachedResponse] = None
    result: Any = None
    usage: Optional[IncrementResult] = None
    decision: Optional[UsageDecision] = None
    generation: Optional[Generation] = None


def operation_succeeded(result: Any) -> bool:
    """Mappings report success through ``success: True``; anything else by truthiness."""
    if isinstance(result, Mapping):
        return result.get("success") is True
    return bool(result)


FAILED_GENERATION_CODE = "GENERATION_FAILED"


def result_location(result: Any) -> Optional[str]:
    """Where a successful operation stored its output."""
    if isinstance(result, Mapping):
        location = result.get("result_location") or result.get("url")
        return str(location) if location else None
    return str(result) if result else None


def failure_details(result: Any) -> Tuple[str, str]:
    """(error_code, error_message) reported by a failed operation."""
    if isinstance(result, Mapping):
        code = result.get("error_code") or result.get("code") or FAILED_GENERATION_CODE
        message = result.get("error") or result.get("message") or "Generation failed"
        return str(code), str(message)
    return FAILED_GENERATION_CODE, "Generation failed"


def admin_decision(operation_class: OperationClass) -> UsageDecision:
    return UsageDecision(
        can_generate=True,
        tier=ADMIN_TIER,
        tier_name="Admin",
        operation_class=operation_class,
        watermark_free=True,
        reason="Admin bypass",
    )


class RateLimitInterceptor:
    """
    Guards generation requests with the usage accountant.

    Usage:
        metered = await interceptor.run(identity, OperationClass.QUICK, operation, source_photo)

    or, step by step:
        gate = await interceptor.check(identity, OperationClass.QUICK)
        if not gate.allowed:
            raise HTTPException(402, detail=gate.denial.model_dump())
        ...  # run the generation
        await interceptor.commit(gate, succeeded=True)
    """

    def __init__(
        self,
        accountant: Optional[UsageAccountant] = None,
        profiles: Optional[SupabaseProfileStore] = None,
        anonymous_counters: Optional[SupabaseAnonymousCounterStore] = None,
        generations: Optional[GenerationService] = None,
        upgrade_url: str = "/pricing",
    ):
        self.accountant = accountant if accountant is not None else usage_accountant
        self.profiles = profiles if profiles is not None else profile_store
        self.anonymous_counters = anonymous_counters if anonymous_counters is not None else anonymous_counter_store
        self.generations = generations if generations is not None else generation_service
        self.upgrade_url = upgrade_url

    async def check(
        self,
        identity: Identity,
        operation_class: OperationClass,
        is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> UsageGate:
        """Decide whether the request may proceed to the expensive operation."""
        operation_class = OperationClass(operation_class)

        if is_admin:
            logger.info(f"[ADMIN] Rate limit bypassed for {operation_class.value} generation")
            return UsageGate(
                allowed=True,
                identity=identity,
                operation_class=operation_class,
                decision=admin_decision(operation_class),
                is_admin=True,
            )

        profile = await self._load_profile(identity)
        if isinstance(identity, AnonymousIdentity):
            await self._prime_anonymous_cache(identity)

        decision = self.accountant.check_usage(identity, profile, operation_class, now=now)
        gate = UsageGate(
            allowed=decision.can_generate,
            identity=identity,
            operation_class=operation_class,
            decision=decision,
            profile=profile,
        )
        if not decision.can_generate:
            gate.denial = self.limit_reached(decision)
            logger.info(
                f"Generation limit reached: tier={decision.tier} class={operation_class.value} "
                f"used={decision.used} limit={decision.limit}"
            )
        return gate

    async def commit(
        self,
        gate: UsageGate,
        succeeded: bool,
        now: Optional[datetime] = None,
    ) -> Optional[IncrementResult]:
        """
        Count a finished generation. Only a successful, non-admin, allowed
        generation is counted.
        """
        if not succeeded or not gate.allowed or gate.is_admin:
            return None

        profile = gate.profile
        if gate.decision.use_credit and isinstance(gate.identity, AuthenticatedIdentity):
            # Credits may have been spent since check(); charge against a fresh read.
            profile = await self._refresh_profile(gate.identity, fallback=gate.profile)

        result = self.accountant.increment_usage(
            gate.identity,
            profile,
            gate.operation_class,
            use_credit=gate.decision.use_credit,
            credit_cost=gate.decision.credit_cost,
            now=now,
        )
        if not result.success:
            logger.warning(f"Usage increment failed: {result.error.value if result.error else 'unknown'}")
            return result

        if result.should_update_db:
            await self._persist(gate.identity, gate.operation_class, result)
        return result

    async def run(
        self,
        identity: Identity,
        operation_class: OperationClass,
        operation: Callable[[], Awaitable[Any]],
        source_photo: str,
        is_admin: bool = False,
        succeeded: Callable[[Any], bool] = operation_succeeded,
    ) -> MeteredResult:
        """
        Check, record a pending generation, run ``operation`` and settle both
        the usage counters and the generation record.

        A failed operation is not counted and its generation is failed with
        the reported error code. A generation whose credit charge is refused
        at commit time is failed with ``INSUFFICIENT_CREDITS``. Exceptions
        raised by ``operation`` fail the generation and propagate.
        """
        gate = await self.check(identity, operation_class, is_admin=is_admin)
        if not gate.allowed:
            return MeteredResult(allowed=False, denial=gate.denial, decision=gate.decision)

        generation = self.generations.create(identity, source_photo, gate.operation_class)
        try:
            result = await operation()
        except Exception as e:
            self.generations.fail(generation.id, FAILED_GENERATION_CODE, str(e))
            raise

        if not succeeded(result):
            error_code, error_message = failure_details(result)
            logger.info(f"Generation {generation.id} failed: {error_code}")
            return MeteredResult(
                allowed=True,
                result=result,
                decision=gate.decision,
                generation=self.generations.fail(generation.id, error_code, error_message),
            )

        usage = await self.commit(gate, succeeded=True)
        if usage is not None and not usage.success:
            error_code = usage.error.value if usage.error else FAILED_GENERATION_CODE
            return MeteredResult(
                allowed=True,
                result=result,
                usage=usage,
                decision=gate.decision,
                generation=self.generations.fail(generation.id, error_code, "Not enough credits"),
            )

        return MeteredResult(
            allowed=True,
            succeeded=True,
            result=result,
            usage=usage,
            decision=gate.decision,
            generation=self.generations.complete(generation.id, result_location(result)),
        )

    async def snapshot(self, identity: Identity, now: Optional[datetime] = None) -> UsageSnapshot:
        """Current usage for display, degrading like ``check`` does."""
        profile = await self._load_profile(identity)
        if isinstance(identity, AnonymousIdentity):
            await self._prime_anonymous_cache(identity)
        return self.accountant.usage_snapshot(identity, profile, now=now)

    def limit_reached(self, decision: UsageDecision) -> LimitReachedResponse:
        """Structured body for a denied generation."""
        return LimitReachedResponse(
            tier=decision.tier,
            tier_name=decision.tier_name,
            operation_class=decision.operation_class,
            used=decision.used,
            limit=decision.limit,
            remaining=decision.remaining,
            credit_balance=decision.credit_balance,
            credit_cost=self.accountant.ledger.cost(decision.operation_class),
            upgrade_url=self.upgrade_url,
            message=get_upgrade_message(decision.tier),
        )

    async def _load_profile(self, identity: Identity) -> Optional[Profile]:
        if not isinstance(identity, AuthenticatedIdentity):
            return None
        try:
            return await self.profiles.get(identity.user_id)
        except UpstreamUnavailableError as e:
            logger.error(f"Error fetching profile for rate limit, treating as free tier: {e}")
        except Exception as e:
            logger.error(f"Unexpected error fetching profile, treating as free tier: {e}")
        return None

    async def _refresh_profile(self, identity: AuthenticatedIdentity, fallback: Optional[Profile]) -> Optional[Profile]:
        """Re-read the profile before charging credits; keep the checked snapshot if the read fails."""
        try:
            return await self.profiles.get(identity.user_id)
        except Exception as e:
            logger.error(f"Error re-reading profile before credit charge, using checked profile: {e}")
            return fallback

    async def _prime_anonymous_cache(self, identity: AnonymousIdentity) -> None:
        """Load persisted counts for a session token the cache does not hold yet."""
        store = self.accountant.anonymous_store
        if not identity.session_token or store.is_cached(identity.session_token):
            return
        try:
            counts = await self.anonymous_counters.get(identity.session_token)
        except Exception as e:
            logger.warning(f"Anonymous usage lookup failed, using in-memory counts: {e}")
            return
        if counts is None:
            return

        # Only this session's own (possibly expired) entry may raise the persisted
        # counts; the shared IP fallback belongs to other callers too.
        local = store.session_counts(identity.session_token)
        if local is not None:
            counts = AnonymousCounts(
                quick_used=max(counts.quick_used, local.quick_used),
                premium_used=max(counts.premium_used, local.premium_used),
            )
        store.prime(identity.session_token, counts.quick_used, counts.premium_used)

    async def _persist(self, identity: Identity, operation_class: OperationClass, result: IncrementResult) -> None:
        try:
            if isinstance(identity, AuthenticatedIdentity):
                await self.profiles.update(identity.user_id, result.profile_updates)
            elif isinstance(identity, AnonymousIdentity) and identity.session_token:
                persisted = await self.anonymous_counters.increment(
                    identity.session_token,
                    operation_class,
                    network_address=identity.network_address,
                    user_agent=identity.user_agent,
                )
                # Another worker may have counted this session too.
                self.accountant.anonymous_store.prime(
                    identity.session_token,
                    max(persisted.quick_used, result.new_quick_count),
                    max(persisted.premium_used, result.new_premium_count),
                )
        except Exception as e:
            logger.error(f"Error updating usage: {e}")


# Pre-configured interceptor instance
rate_limit_interceptor = RateLimitInterceptor(upgrade_url=settings.upgrade_url)


def get_rate_limit_interceptor() -> RateLimitInterceptor:
    """FastAPI dependency provider for the interceptor."""
    return rate_limit_interceptor
