"""
Generation history and access control.

This service handles:
- Recording a generation when work starts (pending)
- The one-way transition to completed or failed
- Authorizing retrieval: owners for authenticated generations, a
  capability token (view token) for anonymous ones
- Listing a user's history

Records live in process memory.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.security import (
    constant_time_equals,
    generate_capability_token,
    generate_generation_id,
)
from ..schemas.generations import (
    AccessDenialReason,
    AuthorizationResult,
    Generation,
    GenerationStatus,
)
from ..schemas.identity import (
    AnonymousIdentity,
    AuthenticatedIdentity,
    Identity,
    OperationClass,
)

logger = logging.getLogger(__name__)


class GenerationService:
    """Service for generation records and their retrieval rights."""

    def __init__(self):
        self._generations: Dict[str, Generation] = {}
        self._lock = threading.Lock()

    def create(
        self,
        identity: Identity,
        source_photo: str,
        operation_class: Optional[OperationClass] = None,
    ) -> Generation:
        """
        Create a pending generation.

        Authenticated callers become the owner. Anonymous callers get a fresh
        capability token instead, which they must present to view the result.
        """
        if isinstance(identity, AuthenticatedIdentity):
            owner_id, capability_token = identity.user_id, None
        elif isinstance(identity, AnonymousIdentity):
            owner_id, capability_token = None, generate_capability_token()
        else:
            raise TypeError(f"Unsupported identity: {identity!r}")

        generation = Generation(
            id=generate_generation_id(),
            owner_id=owner_id,
            capability_token=capability_token,
            source_photo=source_photo,
            operation_class=operation_class,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._generations[generation.id] = generation
        return generation

    def complete(self, generation_id: str, result_location: str) -> Optional[Generation]:
        """Mark a generation as completed. Returns None if it does not exist."""
        return self._finish(
            generation_id,
            status=GenerationStatus.COMPLETED,
            result_location=result_location,
        )

    def fail(self, generation_id: str, error_code: str, error_message: str) -> Optional[Generation]:
        """Mark a generation as failed (e.g. SAFETY_BLOCK, TIMEOUT). Returns None if it does not exist."""
        return self._finish(
            generation_id,
            status=GenerationStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
        )

    def _finish(self, generation_id: str, **changes) -> Optional[Generation]:
        with self._lock:
            generation = self._generations.get(generation_id)
            if generation is None:
                return None
            if generation.is_terminal:
                logger.warning(
                    f"Ignoring transition of generation {generation_id}: already {generation.status.value}"
                )
                return generation

            updated = generation.model_copy(
                update={**changes, "completed_at": datetime.now(timezone.utc)}
            )
            self._generations[generation_id] = updated
            return updated

    def get(self, generation_id: str) -> Optional[Generation]:
        with self._lock:
            return self._generations.get(generation_id)

    def list_for_owner(self, user_id: str, limit: int = 10) -> List[Generation]:
        """A user's generations, newest first."""
        with self._lock:
            owned = [g for g in self._generations.values() if g.owner_id == user_id]
        owned.sort(key=lambda g: g.created_at, reverse=True)
        return owned[:limit]

    def authorize(
        self,
        generation_id: str,
        requesting_identity: Optional[Identity],
        supplied_token: Optional[str] = None,
        is_admin: bool = False,
    ) -> AuthorizationResult:
        """
        Decide whether the caller may retrieve a generation.

        Authenticated generations are only visible to their owner; a token is
        never accepted for them. Anonymous generations need the capability
        token, compared in constant time. Admin sessions see everything.
        """
        generation = self.get(generation_id)
        if generation is None:
            return AuthorizationResult(authorized=False, reason=AccessDenialReason.NOT_FOUND)

        if is_admin:
            logger.info(f"[ADMIN] Access granted to generation {generation_id}")
            return AuthorizationResult(authorized=True, generation=generation)

        if generation.owner_id is not None:
            if (
                isinstance(requesting_identity, AuthenticatedIdentity)
                and requesting_identity.user_id == generation.owner_id
            ):
                return AuthorizationResult(authorized=True, generation=generation)
            return AuthorizationResult(authorized=False, reason=AccessDenialReason.NOT_AUTHORIZED)

        if not supplied_token or not constant_time_equals(supplied_token, generation.capability_token):
            return AuthorizationResult(authorized=False, reason=AccessDenialReason.NOT_AUTHORIZED)
        return AuthorizationResult(authorized=True, generation=generation)

    def clear(self) -> None:
        with self._lock:
            self._generations.clear()


# Produces the image for (source_photo, operation_class). Installed by the
# deployment; None leaves generation creation disabled.
GenerationBackend = Callable[[str, OperationClass], Awaitable[Any]]
generation_backend: Optional[GenerationBackend] = None


# Global service instance
generation_service = GenerationService()


def get_generation_service() -> GenerationService:
    """FastAPI dependency provider for the generation service."""
    return generation_service


def get_generation_backend() -> Optional[GenerationBackend]:
    """FastAPI dependency provider for the image generation backend."""
    return generation_backend
