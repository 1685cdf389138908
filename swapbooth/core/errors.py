"""
Error codes and exceptions for usage accounting and generation access.
"""
from enum import Enum


class UsageErrorCode(str, Enum):
    """Machine-readable codes returned to API callers."""
    LIMIT_REACHED = "LIMIT_REACHED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    NOT_FOUND = "NOT_FOUND"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    IDENTITY_REQUIRED = "IDENTITY_REQUIRED"


class UnknownTierError(ValueError):
    """Raised when a tier id is not in the tier catalog."""

    def __init__(self, tier_id: str):
        super().__init__(f"Unknown tier: {tier_id!r}")
        self.tier_id = tier_id


class UpstreamUnavailableError(Exception):
    """Raised when the profile store or the anonymous counter store fails."""

    code = UsageErrorCode.UPSTREAM_UNAVAILABLE
