"""
Middleware module for FastAPI application.
"""

from .rate_limit import BurstThrottleMiddleware, FixedWindowCounter

__all__ = ["BurstThrottleMiddleware", "FixedWindowCounter"]
