"""
Generation endpoints.

- POST /generations: metered generation; anonymous callers receive the
  view token once, in the response
- GET /generations: history of the authenticated caller
- GET /generations/{id}: one generation; anonymous generations need
  ?view_token=<capability token>
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core.config import settings
from ...core.dependencies import get_identity, get_identity_with_session, is_admin_request
from ...dependencies.rate_limit import RateLimitInterceptor, get_rate_limit_interceptor
from ...schemas.generations import (
    AccessDenialReason,
    CreateGenerationRequest,
    CreateGenerationResponse,
    GenerationHistoryResponse,
    GenerationResponse,
)
from ...schemas.identity import AuthenticatedIdentity, Identity
from ...services.generation_service import (
    GenerationBackend,
    GenerationService,
    get_generation_backend,
    get_generation_service,
)

router = APIRouter(prefix="/generations", tags=["generations"])
logger = logging.getLogger(__name__)


@router.post("", response_model=CreateGenerationResponse, status_code=status.HTTP_201_CREATED)
async def create_generation(
    body: CreateGenerationRequest,
    identity: Identity = Depends(get_identity_with_session),
    is_admin: bool = Depends(is_admin_request),
    interceptor: RateLimitInterceptor = Depends(get_rate_limit_interceptor),
    backend: Optional[GenerationBackend] = Depends(get_generation_backend),
):
    """
    Run one generation against the caller's quota or credits.

    Denied requests get 402 with the limit-reached body. A generation that
    ran but failed is returned with ``success: false`` and is not counted.
    """
    if backend is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Generation backend not configured",
        )

    async def operation():
        return await backend(body.source_photo, body.operation_class)

    try:
        metered = await interceptor.run(
            identity, body.operation_class, operation, body.source_photo, is_admin=is_admin
        )
    except Exception as e:
        logger.error(f"Generation backend error: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Generation failed",
        )

    if not metered.allowed:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=metered.denial.model_dump(mode="json"),
        )

    generation = metered.generation
    return CreateGenerationResponse(
        success=metered.succeeded,
        generation=generation.public_view(),
        view_token=generation.capability_token,
        watermark_free=metered.decision.watermark_free,
    )


@router.get("", response_model=GenerationHistoryResponse)
async def list_generations(
    limit: int = Query(default=settings.generation_history_limit, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    service: GenerationService = Depends(get_generation_service),
):
    """Get the caller's generation history, newest first."""
    if not isinstance(identity, AuthenticatedIdentity):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please log in to view your generation history",
            headers={"WWW-Authenticate": "Bearer"},
        )

    history = [g.public_view() for g in service.list_for_owner(identity.user_id, limit=limit)]
    return GenerationHistoryResponse(generations=history, count=len(history))


@router.get("/{generation_id}", response_model=GenerationResponse)
async def get_generation(
    generation_id: str,
    view_token: Optional[str] = Query(default=None, alias="view_token"),
    identity: Identity = Depends(get_identity),
    is_admin: bool = Depends(is_admin_request),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Get a specific generation.

    The view token is never echoed back in the response.
    """
    access = service.authorize(generation_id, identity, view_token, is_admin=is_admin)

    if not access.authorized:
        if access.reason == AccessDenialReason.NOT_FOUND:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": "Generation not found", "code": AccessDenialReason.NOT_FOUND.value},
            )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Not authorized to view this generation", "code": AccessDenialReason.NOT_AUTHORIZED.value},
        )

    return GenerationResponse(generation=access.generation.public_view())
