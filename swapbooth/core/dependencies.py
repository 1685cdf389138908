"""
FastAPI dependencies for caller identity.

Authentication is optional everywhere: a valid Supabase bearer token makes
the caller an AuthenticatedIdentity, anything else (no header, malformed
header, bad token) falls back to an AnonymousIdentity built from the
anon_id cookie and the client IP.
"""
import logging
import uuid
from dataclasses import replace
from typing import Optional
from fastapi import Depends, Request, Response
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings
from .security import extract_user_id_from_token, is_valid_session_token
from ..schemas.identity import AnonymousIdentity, AuthenticatedIdentity, Identity
from ..services.admin_sessions import AdminSessionStore, get_admin_sessions

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme; missing credentials are not an error
security = HTTPBearer(auto_error=False)

ADMIN_TOKEN_HEADER = "x-admin-token"
ADMIN_TOKEN_COOKIE = "adminToken"


def get_client_ip(request: Request) -> str:
    """
    Client IP address, honouring proxy headers (Vercel, Cloudflare, ALB).
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
        if ip:
            return ip

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


def get_session_token(request: Request) -> Optional[str]:
    """The anon_id cookie value, if present and well-formed."""
    value = request.cookies.get(settings.anon_cookie_name)
    return value if is_valid_session_token(value) else None


def mint_session_token(response: Response) -> str:
    """Issue a new anon_id cookie (httpOnly, 24h)."""
    token = str(uuid.uuid4())
    response.set_cookie(
        key=settings.anon_cookie_name,
        value=token,
        max_age=settings.anon_cookie_max_age,
        httponly=True,
        secure=settings.effective_cookie_secure,
        samesite="lax",
        path="/",
    )
    return token


async def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """
    Dependency resolving the caller's identity without ever rejecting the request.
    """
    if credentials and credentials.credentials:
        user_id = extract_user_id_from_token(credentials.credentials)
        if user_id:
            return AuthenticatedIdentity(user_id=user_id)
        logger.warning("Auth: token verification failed, continuing as anonymous")

    return AnonymousIdentity(
        network_address=get_client_ip(request),
        session_token=get_session_token(request),
        user_agent=request.headers.get("user-agent"),
    )


async def get_identity_with_session(
    request: Request,
    response: Response,
    identity: Identity = Depends(get_identity),
) -> Identity:
    """
    Like get_identity, but mints an anon_id cookie for anonymous callers
    that do not have one yet.
    """
    if isinstance(identity, AnonymousIdentity) and not identity.session_token:
        token = mint_session_token(response)
        return replace(identity, session_token=token)
    return identity


def get_admin_token(request: Request) -> Optional[str]:
    """Admin token from the X-Admin-Token header, then the adminToken cookie."""
    return request.headers.get(ADMIN_TOKEN_HEADER) or request.cookies.get(ADMIN_TOKEN_COOKIE)


async def is_admin_request(
    request: Request,
    sessions: AdminSessionStore = Depends(get_admin_sessions),
) -> bool:
    """Dependency telling whether the request carries a live admin session."""
    return sessions.is_valid(get_admin_token(request))
