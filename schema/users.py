"""Defines schema of requests and responses related to users"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field
from typing import Annotated

from models.users import Credential


class RegisterRequest(BaseModel):
    """Request body for creating a credential."""

    email: EmailStr
    name: Annotated[str, Field(max_length=100, min_length=1)]
    password: str


class UpdateUserRequest(BaseModel):
    name: Annotated[str, Field(max_length=100, min_length=1)]


class UserResponse(BaseModel):
    """Public projection of a credential. Never carries the password hash."""

    subject: str
    email: EmailStr
    name: str
    is_active: bool
    created_at: datetime

    @classmethod
    def from_credential(cls, credential: Credential) -> "UserResponse":
        return cls(
            subject=credential.subject,
            email=credential.email,
            name=credential.name,
            is_active=credential.is_active,
            created_at=credential.created_at,
        )
