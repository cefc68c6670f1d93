"""Token service: issues, validates and rotates signed access/refresh pairs.

The service is purely functional. Apart from the read-only signing secret
it holds no shared mutable state, so `rotate` can run concurrently for the
same subject without any locking.
"""

import time
import secrets

from typing import Callable

from jose import JWTError, jwt

from models.helpers import TokenType
from schema.security import TokenClaims, TokenPair
from utils.exceptions import (
    SigningKeyUnavailable,
    TokenExpired,
    TokenMalformed,
    TokenTypeMismatch,
)


class TokenService:
    """Signs and verifies HS256 tokens carrying `TokenClaims`."""

    def __init__(
        self,
        secret_key: str | None,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        algorithm: str = "HS256",
        clock: Callable[[], float] = time.time,
    ):
        if not secret_key:
            raise SigningKeyUnavailable("Token signing secret is not configured")
        if access_ttl_seconds >= refresh_ttl_seconds:
            raise ValueError("Access tokens must expire before refresh tokens")

        self._secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.clock = clock

    def _encode(self, subject: str, token_type: TokenType, ttl_seconds: int) -> str:
        now = int(self.clock())
        payload = {
            "sub": subject,
            "iat": now,
            "exp": now + ttl_seconds,
            "type": token_type.value,
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def issue(self, subject: str) -> TokenPair:
        """Create an access/refresh pair for `subject`. Both tokens are always issued together."""
        return TokenPair(
            access_token=self._encode(subject, TokenType.ACCESS, self.access_ttl_seconds),
            refresh_token=self._encode(subject, TokenType.REFRESH, self.refresh_ttl_seconds),
            token_type="Bearer",
            expires_in=self.access_ttl_seconds,
        )

    def validate(self, token: str, expected_type: TokenType) -> TokenClaims:
        """Verify `token` and return its claims.

        The type check runs before the expiry check, so a token of the wrong
        type is reported as `TokenTypeMismatch` whether or not it has expired.

        Raises:
            TokenMalformed: Bad signature, bad encoding or missing claims.
            TokenTypeMismatch: `token_type` differs from `expected_type`.
            TokenExpired: `expires_at` is not in the future.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
            claims = TokenClaims(
                subject=payload["sub"],
                issued_at=payload["iat"],
                expires_at=payload["exp"],
                token_type=payload["type"],
                jti=payload["jti"],
            )
        except (JWTError, KeyError, ValueError, TypeError, AttributeError) as e:
            raise TokenMalformed() from e

        if claims.token_type != expected_type:
            raise TokenTypeMismatch()

        if claims.expires_at <= self.clock():
            raise TokenExpired()

        return claims

    def rotate(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a brand new pair for the same subject."""
        claims = self.validate(refresh_token, TokenType.REFRESH)
        return self.issue(claims.subject)
