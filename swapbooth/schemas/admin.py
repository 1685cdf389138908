"""
Pydantic schemas for admin debug endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class AdminLoginRequest(BaseModel):
    """Schema for admin login."""
    password: str = Field(..., min_length=1, description="Admin password")


class AdminLoginResponse(BaseModel):
    """Schema for a created admin session."""
    success: bool = True
    token: str = Field(..., description="Admin session token, sent back as X-Admin-Token")
    expires_at: datetime


class AdminStatusResponse(BaseModel):
    is_admin: bool
    admin_configured: bool
    active_sessions: Optional[int] = None
    anonymous_sessions_cached: Optional[int] = None
    anonymous_addresses_tracked: Optional[int] = None
