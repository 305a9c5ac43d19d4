"""Pydantic request/response schemas for API endpoints."""

from identity.schemas.account import (
    AccountResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    PasswordResetRequest,
    RegisterRequest,
    UpdateProfileRequest,
)

__all__ = [
    # Accounts
    "AccountResponse",
    "ChangePasswordRequest",
    "LoginRequest",
    "LoginResponse",
    "PasswordResetRequest",
    "RegisterRequest",
    "UpdateProfileRequest",
]
