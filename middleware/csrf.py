"""
Double-submit cookie CSRF middleware.

A forging site can make the browser send the CSRF cookie, but the same-origin
policy stops it from reading the value to echo it in `X-CSRF-Token`.
"""

import logfire

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from models.helpers import ClientKind
from security.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, constant_time_equals
from security.helpers import get_client_kind
from utils.exceptions import CsrfMismatch

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


class CSRFMiddleware(BaseHTTPMiddleware):
    """Stateless per-request CSRF verification for browser callers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method in SAFE_METHODS:
            return await call_next(request)

        # Native callers authenticate with a bearer header, never an ambient cookie
        if get_client_kind(request) is ClientKind.NATIVE:
            return await call_next(request)

        cookie_token = request.cookies.get(CSRF_COOKIE_NAME) or ""
        header_token = request.headers.get(CSRF_HEADER_NAME) or ""

        if not cookie_token:
            logfire.warning(
                "CSRF validation failed on {method} {path}: no cookie token",
                method=request.method,
                path=request.url.path,
            )
            return CsrfMismatch("CSRF token missing. Fetch /csrf first.").to_response()

        if not header_token or not constant_time_equals(cookie_token, header_token):
            logfire.warning(
                "CSRF validation failed on {method} {path}: token mismatch",
                method=request.method,
                path=request.url.path,
            )
            return CsrfMismatch().to_response()

        return await call_next(request)
