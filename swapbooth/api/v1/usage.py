"""
Usage API

GET /usage/me returns the caller's tier, remaining quick/premium
generations and credit balance. Anonymous callers get an anon_id cookie
so their usage follows them across page refreshes.
"""
import logging
from fastapi import APIRouter, Depends

from ...core.dependencies import get_identity_with_session
from ...dependencies.rate_limit import RateLimitInterceptor, get_rate_limit_interceptor
from ...schemas.identity import Identity
from ...schemas.usage import UsageSnapshot

router = APIRouter(prefix="/usage", tags=["usage"])
logger = logging.getLogger(__name__)


@router.get("/me", response_model=UsageSnapshot)
async def get_my_usage(
    identity: Identity = Depends(get_identity_with_session),
    interceptor: RateLimitInterceptor = Depends(get_rate_limit_interceptor),
):
    """
    Get usage for the current caller.

    Profile lookups that fail degrade to the free tier rather than an error.
    """
    return await interceptor.snapshot(identity)
