"""
Pydantic schemas for generation records and their access checks.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .identity import OperationClass


class GenerationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AccessDenialReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"


class Generation(BaseModel):
    """
    A produced artifact.

    Authenticated generations carry ``owner_id``; anonymous ones carry a
    ``capability_token`` instead. Exactly one of the two is set.
    """
    id: str
    owner_id: Optional[str] = None
    capability_token: Optional[str] = None
    source_photo: str
    operation_class: Optional[OperationClass] = None
    status: GenerationStatus = GenerationStatus.PENDING
    result_location: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_single_access_path(self) -> "Generation":
        if (self.owner_id is None) == (self.capability_token is None):
            raise ValueError("exactly one of owner_id and capability_token must be set")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status != GenerationStatus.PENDING

    def public_view(self) -> Dict[str, Any]:
        """Serializable view without the capability token."""
        return self.model_dump(mode="json", exclude={"capability_token"})


class AuthorizationResult(BaseModel):
    """Outcome of a retrieval authorization check."""
    authorized: bool
    reason: Optional[AccessDenialReason] = None
    generation: Optional[Generation] = None


class GenerationResponse(BaseModel):
    success: bool = True
    generation: Dict[str, Any]


class GenerationHistoryResponse(BaseModel):
    success: bool = True
    generations: List[Dict[str, Any]]
    count: int


class CreateGenerationRequest(BaseModel):
    source_photo: str = Field(..., min_length=1, description="Storage location of the uploaded photo")
    operation_class: OperationClass = OperationClass.QUICK


class CreateGenerationResponse(BaseModel):
    """
    Result of a metered generation.

    ``view_token`` is returned once, to the anonymous caller that created
    the generation; it is required to retrieve the generation later.
    """
    success: bool
    generation: Dict[str, Any]
    view_token: Optional[str] = None
    watermark_free: bool = False
