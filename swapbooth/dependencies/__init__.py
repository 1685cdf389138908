"""
Dependencies module for FastAPI dependency injection.
"""

from .rate_limit import (
    rate_limit_interceptor,
    RateLimitInterceptor,
    UsageGate,
    MeteredResult,
    get_rate_limit_interceptor,
    operation_succeeded,
)

__all__ = [
    # Generation rate limiting
    "rate_limit_interceptor",
    "RateLimitInterceptor",
    "UsageGate",
    "MeteredResult",
    "get_rate_limit_interceptor",
    "operation_succeeded",
]
