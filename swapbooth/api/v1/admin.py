"""
Admin debug-mode endpoints.

Login is rate limited per IP to slow down password guessing.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from ...core.config import settings
from ...core.dependencies import get_admin_token, is_admin_request
from ...schemas.admin import AdminLoginRequest, AdminLoginResponse, AdminStatusResponse
from ...services.admin_sessions import AdminSessionStore, get_admin_sessions
from ...services.anonymous_usage import anonymous_usage_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

limiter = Limiter(key_func=get_remote_address)


@router.post("/login", response_model=AdminLoginResponse)
@limiter.limit(settings.admin_login_rate_limit)
async def admin_login(
    request: Request,
    body: AdminLoginRequest,
    sessions: AdminSessionStore = Depends(get_admin_sessions),
):
    """Exchange the admin password for a session token."""
    result = sessions.login(body.password)

    if not result.valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error,
        )

    return AdminLoginResponse(token=result.token, expires_at=result.expires_at)


@router.post("/logout")
async def admin_logout(
    request: Request,
    sessions: AdminSessionStore = Depends(get_admin_sessions),
):
    """Invalidate the admin session carried by the request."""
    sessions.revoke(get_admin_token(request))
    return {"success": True}


@router.get("/status", response_model=AdminStatusResponse)
async def admin_status(
    is_admin: bool = Depends(is_admin_request),
    sessions: AdminSessionStore = Depends(get_admin_sessions),
):
    """Whether the caller is an admin; admins also get cache statistics."""
    if not is_admin:
        return AdminStatusResponse(is_admin=False, admin_configured=sessions.is_configured)

    stats = anonymous_usage_store.stats()
    return AdminStatusResponse(
        is_admin=True,
        admin_configured=sessions.is_configured,
        active_sessions=sessions.active_count,
        anonymous_sessions_cached=stats["cached_sessions"],
        anonymous_addresses_tracked=stats["fallback_addresses"],
    )
