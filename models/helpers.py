"""Contains all models commonly used across different modules."""
from enum import Enum


class TokenType(str, Enum):
    """Enumeration of credential token types."""
    ACCESS = "access"
    REFRESH = "refresh"


class ClientKind(str, Enum):
    """Kind of caller, resolved once per request from the `X-Client-Type` header."""
    BROWSER = "browser"
    NATIVE = "native"

    @classmethod
    def from_header(cls, value: str | None) -> "ClientKind":
        """Anything other than `native` (case-insensitive) is treated as a browser."""
        if value and value.strip().lower() == cls.NATIVE.value:
            return cls.NATIVE
        return cls.BROWSER
