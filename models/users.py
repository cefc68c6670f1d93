from datetime import datetime, timezone
from uuid import uuid4

from pydantic import Field, EmailStr, BaseModel
from typing import Annotated


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Credential(BaseModel):
    """Stored credential for a single identity.

    The password hash never leaves the server: responses are built from
    `schema.users.UserResponse`, and the hash is excluded from `repr`.
    """
    subject: Annotated[str, Field(default_factory=lambda: str(uuid4()))]
    email: EmailStr
    name: Annotated[str, Field(max_length=100, min_length=1)]
    password_hash: Annotated[str, Field(repr=False)]
    is_active: Annotated[bool, Field(default=True)]
    created_at: Annotated[datetime, Field(default_factory=_now)]
    updated_at: Annotated[datetime, Field(default_factory=_now)]
