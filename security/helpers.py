"""Contains all security related helper functions
"""
from fastapi import Request

from passlib.context import CryptContext

from models.helpers import ClientKind
from models.users import Credential
from utils.exceptions import WeakPassword

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

# Argon2id is memory-hard
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifies that `plain_password` matches `hashed_password`.

    Blocking and CPU heavy: call through the storage bridge.

    Args:
        plain_password (str): The plain text password to verify.
        hashed_password (str): The hashed password to compare against.

    Returns:
        bool: True if the passwords match, False otherwise.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generates an Argon2 hash for the given password.

    Blocking and CPU heavy: call through the storage bridge.

    Args:
        password (str): The plain text password to hash.

    Returns:
        str: The hashed password.
    """
    return pwd_context.hash(password)


def validate_password_strength(password: str) -> None:
    """Checks length and character classes of a new password.

    Raises:
        WeakPassword: The password is too short, too long, or lacks a letter or a digit.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise WeakPassword(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")

    has_letter = any(c.isalpha() for c in password)
    has_digit = any(c.isdigit() for c in password)
    if not has_letter or not has_digit:
        raise WeakPassword("Password must contain at least one letter and one number")


def extract_bearer(request: Request) -> str | None:
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip() or None
    return None


def get_client_kind(request: Request) -> ClientKind:
    """Resolve the caller kind once per request and cache it on `request.state`."""
    kind = getattr(request.state, "client_kind", None)
    if kind is None:
        kind = ClientKind.from_header(request.headers.get("x-client-type"))
        request.state.client_kind = kind
    return kind


async def get_current_user(request: Request) -> Credential:
    """Get the credential behind the access token presented on the request.

    The token comes from `Authorization: Bearer` or, for browsers only, the
    access-token cookie.

    Raises:
        NotAuthenticated: No access token was presented.
        TokenExpired: The access token has expired.
        TokenMalformed: The token could not be verified.
        TokenTypeMismatch: A refresh token was presented as an access token.
        InvalidCredentials: The subject no longer exists or is inactive.

    Returns:
        Credential: The authenticated credential.
    """
    auth_service = request.app.state.auth_service
    token = auth_service.transport.extract_access_token(request, get_client_kind(request))
    return await auth_service.authenticate_access_token(token)
