"""
Caller identities and operation classes.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class OperationClass(str, Enum):
    """The two independently metered kinds of generation."""
    QUICK = "quick"
    PREMIUM = "premium"


@dataclass(frozen=True)
class AnonymousIdentity:
    """Unauthenticated caller, tracked by session cookie and client IP."""
    network_address: str
    session_token: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def has_durable_session(self) -> bool:
        return bool(self.session_token)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Caller with a verified Supabase account."""
    user_id: str


Identity = Union[AnonymousIdentity, AuthenticatedIdentity]
