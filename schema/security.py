"""Defines schema of requests and responses related to security"""

from pydantic import BaseModel, EmailStr, Field

from models.helpers import TokenType


class TokenPair(BaseModel):
    """Model representing both access and refresh tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int  # Access token expiry in seconds


class TokenClaims(BaseModel):
    """Model representing data contained in a signed token."""

    subject: str
    issued_at: int  # Unix timestamp
    expires_at: int  # Unix timestamp
    token_type: TokenType
    jti: str  # Unique token identifier


class LoginRequest(BaseModel):
    """Model for login request."""

    email: EmailStr
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    """Login and refresh response.

    Browser callers receive the tokens as cookies, so both token fields are
    omitted from their body.
    """

    success: bool = True
    message: str
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str | None = None
    expires_in: int


class RefreshTokenRequest(BaseModel):
    """Model for refresh and logout requests from native clients."""

    refresh_token: str | None = None


class CsrfTokenResponse(BaseModel):
    csrf_token: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str
