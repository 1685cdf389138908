"""
Pydantic schemas for usage accounting.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.errors import UsageErrorCode
from .identity import OperationClass


class Profile(BaseModel):
    """
    Row of the Supabase ``profiles`` table, reduced to the fields the
    accounting core reads. Null counters coming from the database are
    treated as zero.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    tier: Optional[str] = None
    subscription_status: Optional[str] = None
    quick_count: int = 0
    premium_count: int = 0
    generation_count: int = 0
    monthly_generation_count: int = 0
    monthly_reset_at: Optional[datetime] = None
    credit_balance: int = 0
    stripe_customer_id: Optional[str] = None

    @field_validator(
        "quick_count",
        "premium_count",
        "generation_count",
        "monthly_generation_count",
        "credit_balance",
        mode="before",
    )
    @classmethod
    def coalesce_null_counter(cls, v: Any) -> Any:
        return 0 if v is None else v


class UsageCounters(BaseModel):
    """Counters for one identity, whatever their source."""
    quick_used: int = 0
    premium_used: int = 0
    monthly_used: int = 0
    credit_balance: int = 0


class AnonymousCounts(BaseModel):
    """Quick/premium counts for an anonymous session."""
    quick_used: int = 0
    premium_used: int = 0


class UsageDecision(BaseModel):
    """Result of checking whether an identity may run one generation."""
    can_generate: bool
    tier: str
    tier_name: str
    operation_class: Optional[OperationClass] = None
    used: int = 0
    limit: Optional[int] = None  # None = unlimited
    remaining: Optional[int] = None  # None = unlimited
    quick_used: int = 0
    quick_limit: Optional[int] = None
    quick_remaining: Optional[int] = None
    premium_used: int = 0
    premium_limit: Optional[int] = None
    premium_remaining: Optional[int] = None
    credit_balance: int = 0
    use_credit: bool = False
    credit_cost: int = 0
    watermark_free: bool = False
    monthly_reset_due: bool = False
    reason: str = ""


class IncrementResult(BaseModel):
    """Next-state counters after a successful generation."""
    success: bool
    error: Optional[UsageErrorCode] = None
    tier: str
    operation_class: OperationClass
    new_quick_count: int = 0
    new_premium_count: int = 0
    new_monthly_count: int = 0
    new_generation_count: int = 0
    new_credit_balance: int = 0
    credits_used: int = 0
    monthly_reset_at: Optional[datetime] = None
    should_update_db: bool = False
    profile_updates: Dict[str, Any] = Field(default_factory=dict)


class UsageSnapshot(BaseModel):
    """Both operation classes' decisions, for display."""
    authenticated: bool
    tier: str
    tier_name: str
    watermark_free: bool
    credit_balance: int
    quick: UsageDecision
    premium: UsageDecision


class LimitReachedResponse(BaseModel):
    """Body returned when quota and credits are exhausted."""
    error: str = "Generation limit reached"
    code: UsageErrorCode = UsageErrorCode.LIMIT_REACHED
    tier: str
    tier_name: str
    operation_class: OperationClass
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    credit_balance: int = 0
    credit_cost: int = 0
    upgrade_url: str
    message: str
