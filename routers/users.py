""" User router exposing the authenticated caller's own profile.
"""

from fastapi import APIRouter, Depends

from models.users import Credential
from schema.users import UpdateUserRequest, UserResponse
from security.helpers import get_current_user
from services.auth import AuthService, get_auth_service

from typing import Annotated

router = APIRouter(
    prefix="/users",
    tags=["Users"],
)


@router.get("/me", response_model=UserResponse)
async def read_current_user(
    current_user: Annotated[Credential, Depends(get_current_user)],
):
    """Return the profile of the caller identified by the access token."""
    return UserResponse.from_credential(current_user)


@router.patch("/me", response_model=UserResponse)
async def update_current_user(
    payload: UpdateUserRequest,
    current_user: Annotated[Credential, Depends(get_current_user)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Update the caller's display name.

    ## Possible Errors
    - 401 Unauthorized: Missing, expired or invalid access token.
    - 403 Forbidden: Browser request without a matching CSRF token.
    """
    updated = await auth_service.update_name(current_user, payload.name)
    return UserResponse.from_credential(updated)
