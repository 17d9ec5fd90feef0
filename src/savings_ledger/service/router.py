"""FastAPI router for the ledger service.

Implements the API endpoints for:
- Identity (/auth/*)
- Member profiles (/profiles)
- Shared savings (/savings)

Handlers never filter or authorize rows themselves; they pass the caller's
identity to the service and the store's policies decide.
"""

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Query, status

from ..persistence.policies import Identity
from .auth import current_identity, require_identity
from .models import (
    AuthUser,
    DeleteResult,
    ErrorResponse,
    Profile,
    ProfileCreate,
    ProfileUpdate,
    Saving,
    SavingCreate,
)

if TYPE_CHECKING:
    from .core import LedgerService

Caller = Annotated[Identity | None, Depends(current_identity)]

_REJECTIONS = {
    status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def build_router(service: "LedgerService") -> APIRouter:
    """Build the ledger API router.

    Args:
        service: The LedgerService instance

    Returns:
        Configured APIRouter
    """
    router = APIRouter()

    # -----------------------------------------------------------------------
    # Identity
    # -----------------------------------------------------------------------

    @router.get("/auth/user", response_model=AuthUser)
    def auth_user(
        identity: Annotated[Identity, Depends(require_identity)],
    ) -> AuthUser:
        """Return the identity behind the bearer token."""
        return AuthUser(id=identity.user_id)

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    @router.get("/profiles", response_model=list[Profile])
    def list_profiles(
        identity: Caller,
        profile_id: str | None = Query(default=None, alias="id"),
    ) -> list[Profile]:
        """List profiles, oldest first. Anonymous callers see none."""
        return service.list_profiles(identity, profile_id)

    @router.post(
        "/profiles",
        response_model=Profile,
        status_code=status.HTTP_201_CREATED,
        responses=_REJECTIONS,
    )
    def create_profile(request: ProfileCreate, identity: Caller) -> Profile:
        """Create the caller's own profile."""
        return service.create_profile(identity, request)

    @router.patch(
        "/profiles/{profile_id}",
        response_model=list[Profile],
        responses=_REJECTIONS,
    )
    def update_profile(
        profile_id: str,
        request: ProfileUpdate,
        identity: Caller,
    ) -> list[Profile]:
        """Rename a profile. Returns the updated rows, empty if none matched."""
        return service.update_profile(identity, profile_id, request)

    # -----------------------------------------------------------------------
    # Savings
    # -----------------------------------------------------------------------

    @router.get("/savings", response_model=list[Saving])
    def list_savings(
        identity: Caller,
        user_id: str | None = Query(default=None),
    ) -> list[Saving]:
        """List the shared savings, newest first."""
        return service.list_savings(identity, user_id)

    @router.post(
        "/savings",
        response_model=Saving,
        status_code=status.HTTP_201_CREATED,
        responses=_REJECTIONS,
    )
    def create_saving(request: SavingCreate, identity: Caller) -> Saving:
        """Record a contribution owned by the caller."""
        return service.create_saving(identity, request)

    @router.delete("/savings/{saving_id}", response_model=DeleteResult)
    def delete_saving(saving_id: str, identity: Caller) -> DeleteResult:
        """Delete one of the caller's savings.

        Deleting a row that is missing or owned by someone else affects
        zero rows and is not an error.
        """
        return service.delete_saving(identity, saving_id)

    return router
