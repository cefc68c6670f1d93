"""
Auth router for handling session issuance, rotation and teardown.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from schema.security import LoginRequest, LoginResponse, MessageResponse, RefreshTokenRequest
from schema.users import RegisterRequest, UserResponse
from security.helpers import get_client_kind
from services.auth import AuthService, get_auth_service

from typing import Annotated

router = APIRouter(
    prefix="/auth",
    tags=["Auth"],
)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Create a new credential.

    ## Possible Errors
    - 400 Bad Request: The password fails the strength rules.
    - 409 Conflict: A user with the provided email already exists.
    - 503 Service Unavailable: The credential store is unreachable.
    """
    credential = await auth_service.register(payload.email, payload.name, payload.password)
    return UserResponse.from_credential(credential)


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> JSONResponse:
    """Login endpoint that issues an access/refresh token pair.

    Browsers (no `X-Client-Type: native` header) receive both tokens as
    HttpOnly cookies and only `expires_in` in the body. Native clients
    receive both tokens in the body.

    ## Responses
    ### Incorrect email or password
    - status code: 401
    - body: ```{"detail": "Incorrect email or password", "code": "invalid_credentials"}```
    """
    pair = await auth_service.login(payload.email, payload.password)
    delivery = auth_service.transport.deliver(pair, get_client_kind(request), "Login successful")
    return delivery.to_response()


@router.post("/refresh", response_model=LoginResponse)
async def refresh(
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    payload: RefreshTokenRequest | None = None,
) -> JSONResponse:
    """Rotate a refresh token into a brand new token pair.

    Native clients send the refresh token in the body; browsers rely on the
    refresh-token cookie. Invalid, expired or wrong-type tokens get a 401.
    """
    kind = get_client_kind(request)
    refresh_token = auth_service.transport.extract_refresh_token(
        request, kind, payload.refresh_token if payload else None
    )
    pair = await auth_service.refresh(refresh_token)
    return auth_service.transport.deliver(pair, kind, "Tokens refreshed").to_response()


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    payload: RefreshTokenRequest | None = None,
) -> JSONResponse:
    """Logout endpoint that clears the session cookies.

    For native clients this is a no-op beyond the client discarding its local
    tokens, unless the refresh-token revocation list is enabled, in which case
    the presented refresh token is spent.
    """
    kind = get_client_kind(request)
    refresh_token = auth_service.transport.extract_refresh_token(
        request, kind, payload.refresh_token if payload else None
    )
    await auth_service.logout(refresh_token)
    return auth_service.transport.clear(kind, "Logged out successfully").to_response()
