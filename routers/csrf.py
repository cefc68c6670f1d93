"""
CSRF router issuing double-submit tokens.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from schema.security import CsrfTokenResponse
from security.csrf import generate_csrf_token
from security.transport import apply_cookies
from services.auth import AuthService, get_auth_service

from typing import Annotated

router = APIRouter(tags=["CSRF"])


@router.get("/csrf", response_model=CsrfTokenResponse)
async def get_csrf_token(
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> JSONResponse:
    """Issue a fresh CSRF token in a readable cookie and echo it in the body.

    Browser clients must send the value back in `X-CSRF-Token` on every
    state-changing request.
    """
    token = generate_csrf_token()
    response = JSONResponse(content=CsrfTokenResponse(csrf_token=token).model_dump())
    apply_cookies(response, [auth_service.transport.csrf_cookie(token)])
    return response
