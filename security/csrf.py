"""Double-submit CSRF token primitives."""

import hmac
import secrets

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "x-csrf-token"
CSRF_TOKEN_BYTES = 32


def generate_csrf_token() -> str:
    """Return a fresh 64 character hex token."""
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two tokens without leaking where they first differ.

    `hmac.compare_digest` ORs together the XOR of every byte pair instead of
    returning at the first difference.
    """
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
