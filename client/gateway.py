"""
Async HTTP client for the session gateway.

Speaks to the gateway either as a native client (tokens in response bodies,
bearer header on requests) or as a browser (cookies plus the double-submit
CSRF header). Expired sessions are recovered transparently through a
`RefreshCoordinator`.
"""

import httpx

from typing import Any, Optional, Protocol

from client.refresh import AuthenticationFailed, RefreshCoordinator
from models.helpers import ClientKind
from security.csrf import CSRF_HEADER_NAME

EXPIRY_CODES = frozenset({"token_expired", "not_authenticated"})
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


class TokenStore(Protocol):
    access_token: Optional[str]
    refresh_token: Optional[str]

    def save(self, access_token: str, refresh_token: str) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    """Keeps native credentials in process memory."""

    def __init__(self):
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    def save(self, access_token: str, refresh_token: str) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None


def error_code(response: httpx.Response) -> Optional[str]:
    """Machine readable error code of a gateway error response, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("code") if isinstance(body, dict) else None


def is_expiry_response(response: httpx.Response) -> bool:
    """Only missing or expired credentials are recoverable by a refresh."""
    return response.status_code == 401 and error_code(response) in EXPIRY_CODES


class GatewayClient:
    """
    Client for the gateway's auth and user endpoints.

    Example:
        async with GatewayClient("https://api.example.com") as client:
            await client.login("user@example.com", "s3cret-pass")
            response = await client.request("GET", "/users/me")
    """

    def __init__(
        self,
        base_url: str,
        kind: ClientKind = ClientKind.NATIVE,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
        refresh_timeout: float = 10.0,
    ):
        self.kind = kind
        self.tokens = token_store or MemoryTokenStore()
        self.csrf_token: Optional[str] = None
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            headers={"X-Client-Type": kind.value},
        )
        self.coordinator = RefreshCoordinator(
            self._refresh, on_failure=self._discard_credentials, timeout=refresh_timeout
        )

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def ensure_csrf(self) -> Optional[str]:
        """Fetch a CSRF token once. Native clients do not need one."""
        if self.kind is ClientKind.NATIVE:
            return None
        if self.csrf_token is None:
            response = await self._http.get("/csrf")
            response.raise_for_status()
            self.csrf_token = response.json()["csrf_token"]
        return self.csrf_token

    async def register(self, email: str, name: str, password: str) -> dict:
        response = await self._send("POST", "/auth/register", json={"email": email, "name": name, "password": password})
        response.raise_for_status()
        return response.json()

    async def login(self, email: str, password: str) -> dict:
        """
        Log in and keep the issued credentials.

        Raises:
            AuthenticationFailed: The gateway rejected the credentials
        """
        response = await self._send("POST", "/auth/login", json={"email": email, "password": password})
        if response.status_code == 401:
            raise AuthenticationFailed(response.json().get("detail", "Login failed"))
        response.raise_for_status()

        body = response.json()
        if self.kind is ClientKind.NATIVE:
            self.tokens.save(body["access_token"], body["refresh_token"])
        return body

    async def logout(self) -> None:
        payload = {"refresh_token": self.tokens.refresh_token} if self.kind is ClientKind.NATIVE else None
        try:
            response = await self._send("POST", "/auth/logout", json=payload)
            response.raise_for_status()
        finally:
            self._discard_credentials()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send an authenticated request, recovering once from an expired session.

        Raises:
            AuthenticationFailed: The session expired and could not be refreshed
        """
        generation = self.coordinator.generation
        response = await self._send(method, url, **kwargs)
        if not is_expiry_response(response):
            return response

        await self.coordinator.recover(generation)
        return await self._send(method, url, **kwargs)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        method = method.upper()
        headers = dict(kwargs.pop("headers", None) or {})

        if self.kind is ClientKind.NATIVE:
            if self.tokens.access_token:
                headers["Authorization"] = f"Bearer {self.tokens.access_token}"
        elif method not in SAFE_METHODS:
            headers[CSRF_HEADER_NAME] = await self.ensure_csrf()

        return await self._http.request(method, url, headers=headers, **kwargs)

    async def _refresh(self) -> None:
        if self.kind is ClientKind.NATIVE:
            if not self.tokens.refresh_token:
                raise AuthenticationFailed("No refresh token available")
            response = await self._send("POST", "/auth/refresh", json={"refresh_token": self.tokens.refresh_token})
        else:
            response = await self._send("POST", "/auth/refresh")

        if response.status_code != 200:
            raise AuthenticationFailed(f"Refresh rejected: {error_code(response) or response.status_code}")

        if self.kind is ClientKind.NATIVE:
            body = response.json()
            self.tokens.save(body["access_token"], body["refresh_token"])

    def _discard_credentials(self) -> None:
        self.tokens.clear()
        if self.kind is ClientKind.BROWSER:
            self._http.cookies.clear()
            self.csrf_token = None
