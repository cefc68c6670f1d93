"""Session transport adapter.

Decides how an issued `TokenPair` travels back to the caller:

- browser: HttpOnly, SameSite=Lax cookies, no token material in the body
- native: tokens in the response body, the caller stores them and sends the
  access token as a bearer credential
"""

from dataclasses import dataclass, field

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from models.helpers import ClientKind
from schema.security import LoginResponse, TokenPair
from security.csrf import CSRF_COOKIE_NAME
from security.helpers import extract_bearer

ACCESS_TOKEN_COOKIE_NAME = "access_token"
REFRESH_TOKEN_COOKIE_NAME = "refresh_token"
REFRESH_TOKEN_COOKIE_PATH = "/auth"


@dataclass(frozen=True)
class CookieSpec:
    name: str
    value: str
    max_age: int
    path: str = "/"
    httponly: bool = True
    secure: bool = False
    samesite: str = "lax"


@dataclass(frozen=True)
class SessionDelivery:
    """Body and cookies that carry a session to the client."""

    body: dict
    cookies: list[CookieSpec] = field(default_factory=list)

    def to_response(self) -> JSONResponse:
        response = JSONResponse(content=self.body)
        apply_cookies(response, self.cookies)
        return response


class SessionTransport:
    """Maps issued tokens onto the delivery channel of each client kind."""

    def __init__(self, access_ttl_seconds: int, refresh_ttl_seconds: int, secure_cookies: bool = False):
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.secure_cookies = secure_cookies

    def _token_cookies(self, access_token: str, refresh_token: str, clear: bool = False) -> list[CookieSpec]:
        return [
            CookieSpec(
                name=ACCESS_TOKEN_COOKIE_NAME,
                value=access_token,
                max_age=0 if clear else self.access_ttl_seconds,
                secure=self.secure_cookies,
            ),
            CookieSpec(
                name=REFRESH_TOKEN_COOKIE_NAME,
                value=refresh_token,
                max_age=0 if clear else self.refresh_ttl_seconds,
                path=REFRESH_TOKEN_COOKIE_PATH,
                secure=self.secure_cookies,
            ),
        ]

    def deliver(self, pair: TokenPair, kind: ClientKind, message: str) -> SessionDelivery:
        """Choose the delivery channel for `pair`. A mapping, never fails."""
        if kind is ClientKind.NATIVE:
            body = LoginResponse(
                message=message,
                access_token=pair.access_token,
                refresh_token=pair.refresh_token,
                token_type=pair.token_type,
                expires_in=pair.expires_in,
            )
            return SessionDelivery(body=body.model_dump(exclude_none=True))

        body = LoginResponse(message=message, expires_in=pair.expires_in)
        return SessionDelivery(
            body=body.model_dump(exclude_none=True),
            cookies=self._token_cookies(pair.access_token, pair.refresh_token),
        )

    def clear(self, kind: ClientKind, message: str) -> SessionDelivery:
        """Expire the token cookies. For native callers there is nothing to clear server side."""
        body = {"success": True, "message": message}
        if kind is ClientKind.NATIVE:
            return SessionDelivery(body=body)
        return SessionDelivery(body=body, cookies=self._token_cookies("", "", clear=True))

    def csrf_cookie(self, token: str) -> CookieSpec:
        # Readable by page scripts so they can echo it in X-CSRF-Token
        return CookieSpec(
            name=CSRF_COOKIE_NAME,
            value=token,
            max_age=self.refresh_ttl_seconds,
            httponly=False,
            secure=self.secure_cookies,
        )

    @staticmethod
    def extract_access_token(request: Request, kind: ClientKind) -> str | None:
        """Bearer header for every caller; the cookie only for browsers.

        Native requests skip the CSRF guard, so they must never be
        authenticated by an ambient cookie.
        """
        bearer = extract_bearer(request)
        if bearer or kind is ClientKind.NATIVE:
            return bearer
        return request.cookies.get(ACCESS_TOKEN_COOKIE_NAME) or None

    @staticmethod
    def extract_refresh_token(request: Request, kind: ClientKind, body_token: str | None = None) -> str | None:
        if body_token or kind is ClientKind.NATIVE:
            return body_token or None
        return request.cookies.get(REFRESH_TOKEN_COOKIE_NAME) or None


def apply_cookies(response: Response, cookies: list[CookieSpec]) -> None:
    for cookie in cookies:
        response.set_cookie(
            key=cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            path=cookie.path,
            httponly=cookie.httponly,
            secure=cookie.secure,
            samesite=cookie.samesite,
        )
