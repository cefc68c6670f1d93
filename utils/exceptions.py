"""Error taxonomy shared by the gateway's middlewares, services and routers.

Every error carries a client-safe `detail` and a machine readable `code`.
None of them may ever embed token, password or raw credential material.
"""

from fastapi import status
from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base class for all errors rendered to clients."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Internal server error"
    default_code = "internal_error"

    def __init__(self, detail: str | None = None, headers: dict[str, str] | None = None):
        self.detail = detail or self.default_detail
        self.code = self.default_code
        self.headers = headers or {}
        super().__init__(self.detail)

    def body(self) -> dict:
        return {"detail": self.detail, "code": self.code}

    def to_response(self) -> JSONResponse:
        """Render the error as a JSON response.

        Middlewares sit outside FastAPI's exception handlers, so they build
        their responses through this method instead of raising.
        """
        return JSONResponse(
            status_code=self.status_code, content=self.body(), headers=self.headers
        )


class AuthenticationError(GatewayError):
    """Base class for 401 responses."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"
    default_code = "authentication_error"

    def __init__(self, detail: str | None = None, headers: dict[str, str] | None = None):
        super().__init__(detail, {"WWW-Authenticate": "Bearer", **(headers or {})})


class InvalidCredentials(AuthenticationError):
    default_detail = "Incorrect email or password"
    default_code = "invalid_credentials"


class NotAuthenticated(AuthenticationError):
    default_detail = "Not authenticated"
    default_code = "not_authenticated"


class TokenExpired(AuthenticationError):
    default_detail = "Token has expired"
    default_code = "token_expired"


class TokenMalformed(AuthenticationError):
    default_detail = "Invalid token"
    default_code = "token_malformed"


class TokenTypeMismatch(AuthenticationError):
    default_detail = "Invalid token type"
    default_code = "token_type_mismatch"


class TokenRevoked(AuthenticationError):
    default_detail = "Token has already been used"
    default_code = "token_revoked"


class CsrfMismatch(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "CSRF token invalid"
    default_code = "csrf_mismatch"


class RateLimited(GatewayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests"
    default_code = "rate_limited"

    def __init__(self, retry_after: int, limit: int, detail: str | None = None):
        self.retry_after = retry_after
        super().__init__(
            detail,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )

    def body(self) -> dict:
        return {**super().body(), "retry_after": self.retry_after}


class WeakPassword(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Password does not meet the strength requirements"
    default_code = "weak_password"


class StorageError(GatewayError):
    """Raised by a storage operation itself (not found, constraint violation, ...)."""

    default_detail = "Storage operation failed"
    default_code = "storage_error"


class CredentialNotFound(StorageError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Account not found"
    default_code = "not_found"


class CredentialConflict(StorageError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "A user with this email already exists"
    default_code = "conflict"


class StorageUnavailable(StorageError):
    """The backing store could not be reached. May be transient."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Service temporarily unavailable"
    default_code = "storage_unavailable"


class WorkerFailure(GatewayError):
    """A bridge worker crashed before producing a result."""

    default_detail = "Internal server error"
    default_code = "worker_failure"


class SigningKeyUnavailable(RuntimeError):
    """The token signing secret is missing. Fatal, raised at startup only."""
