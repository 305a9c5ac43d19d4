"""Account API request/response schemas.

All request schemas use ConfigDict(extra="forbid") to reject unexpected
fields. Password strength is checked in the service layer so the same
rules apply to registration, reset and profile update.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from identity.models.account import Account

_MAX_PASSWORD_LEN = 128


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD_LEN)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD_LEN)


class PasswordResetRequest(BaseModel):
    """Request body for POST /auth/password-reset."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/password-reset/{token}."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD_LEN)
    password_confirmation: str = Field(min_length=1, max_length=_MAX_PASSWORD_LEN)


class UpdateProfileRequest(BaseModel):
    """Request body for PATCH /users/me.

    Empty or missing name leaves the name unchanged. A password requires a
    matching confirmation.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, max_length=255)
    password: str | None = Field(None, max_length=_MAX_PASSWORD_LEN)
    password_confirmation: str | None = Field(None, max_length=_MAX_PASSWORD_LEN)


class AccountResponse(BaseModel):
    """Public view of an account. Never includes the password hash."""

    id: uuid.UUID
    name: str
    email: str
    roles: list[str]
    activated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Build the response from an ORM account."""
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            roles=list(account.roles),
            activated_at=account.email_activated_at,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class LoginResponse(BaseModel):
    """Body of a successful login. The JWT itself travels in the cookie."""

    account: AccountResponse
    expires_at: datetime
