"""
Admin debug-mode sessions.

An admin logs in with the configured password and receives a random session
token (sent back as the X-Admin-Token header or adminToken cookie). Admin
requests bypass generation limits and may view any generation.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from ..core.config import settings
from ..core.security import constant_time_equals, generate_admin_token

logger = logging.getLogger(__name__)


class AdminLoginResult(BaseModel):
    """Result of an admin login attempt."""
    valid: bool
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminSessionStore:
    """In-memory admin session tokens with expiry."""

    def __init__(
        self,
        admin_password: Optional[str] = None,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.admin_password = admin_password
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.admin_password)

    def login(self, password: str) -> AdminLoginResult:
        """Validate the admin password and create a session."""
        if not self.is_configured:
            return AdminLoginResult(valid=False, error="Admin mode not configured")

        if not constant_time_equals(password, self.admin_password):
            logger.warning("[ADMIN] Failed login attempt")
            return AdminLoginResult(valid=False, error="Invalid password")

        token = generate_admin_token()
        expires_at = self._clock() + self.ttl
        with self._lock:
            self._sessions[token] = expires_at
        self.sweep()

        logger.info("[ADMIN] Successful login, session created")
        return AdminLoginResult(valid=True, token=token, expires_at=expires_at)

    def is_valid(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            expires_at = self._sessions.get(token)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._sessions[token]
                return False
            return True

    def revoke(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            removed = self._sessions.pop(token, None) is not None
        if removed:
            logger.info("[ADMIN] Session invalidated")
        return removed

    def sweep(self) -> int:
        """Drop expired sessions."""
        now = self._clock()
        with self._lock:
            expired = [t for t, expires_at in self._sessions.items() if expires_at <= now]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)


# Global admin session store
admin_sessions = AdminSessionStore(
    admin_password=settings.admin_password,
    ttl_seconds=settings.admin_session_ttl_seconds,
)


def get_admin_sessions() -> AdminSessionStore:
    """FastAPI dependency provider for the admin session store."""
    return admin_sessions
