"""
Security utilities for authentication and access tokens.

Covers:
1. Verifying Supabase access tokens (HS256, audience "authenticated")
2. Minting unguessable ids and capability tokens
3. Constant-time comparison of secrets
"""
import hashlib
import hmac
import logging
import re
import secrets
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from .config import settings

logger = logging.getLogger(__name__)

# Generation ids: 128 random bits. Capability tokens: 256 random bits (64 hex chars).
GENERATION_ID_BYTES = 16
CAPABILITY_TOKEN_BYTES = 32
ADMIN_TOKEN_BYTES = 32
SIGNAL_HASH_LENGTH = 32

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def generate_generation_id() -> str:
    """Generate a unique id for a generation record."""
    return secrets.token_hex(GENERATION_ID_BYTES)


def generate_capability_token() -> str:
    """Generate the view token that grants access to an anonymous generation."""
    return secrets.token_hex(CAPABILITY_TOKEN_BYTES)


def generate_admin_token() -> str:
    """Generate an admin session token."""
    return secrets.token_hex(ADMIN_TOKEN_BYTES)


def is_valid_session_token(value: Optional[str]) -> bool:
    """Anonymous session tokens are UUIDs issued through the anon cookie."""
    return bool(value) and bool(_UUID_RE.match(value))


def constant_time_equals(supplied: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare two secrets without leaking their common prefix through timing.

    Both sides are compared as UTF-8 bytes with ``hmac.compare_digest``.
    Missing values, different byte lengths and values that cannot be
    encoded are a plain mismatch, never an exception.
    """
    if not isinstance(supplied, str) or not isinstance(expected, str):
        return False
    try:
        supplied_bytes = supplied.encode("utf-8")
        expected_bytes = expected.encode("utf-8")
    except UnicodeEncodeError:
        return False
    if len(supplied_bytes) != len(expected_bytes):
        return False
    try:
        return hmac.compare_digest(supplied_bytes, expected_bytes)
    except TypeError:
        return False


def verify_supabase_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify a Supabase JWT token.

    These tokens are issued by Supabase Auth (OAuth, magic link, password)
    and signed with the project's JWT secret.
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        logger.debug(f"Supabase token verification failed: {type(e).__name__}")
        return None


def extract_user_id_from_token(token: str) -> Optional[str]:
    """Extract user ID from a Supabase JWT token."""
    payload = verify_supabase_token(token)
    if payload:
        return payload.get("sub")  # 'sub' is the standard claim for user ID
    return None


def ip_prefix(ip: Optional[str]) -> Optional[str]:
    """Network prefix kept for abuse detection: /24 for IPv4, first four groups for IPv6."""
    if not ip or ip == "unknown":
        return None
    if "." in ip and ":" not in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            return f"{parts[0]}.{parts[1]}.{parts[2]}.0"
    if ":" in ip:
        parts = ip.split(":")
        if len(parts) >= 4:
            return ":".join(parts[:4]) + "::"
    return ip


def hash_signal(value: Optional[str]) -> Optional[str]:
    """Truncated SHA-256 of a client signal such as the User-Agent."""
    if not value:
        return None
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:SIGNAL_HASH_LENGTH]
