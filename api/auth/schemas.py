"""
Auth API schemas (request/response models).
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    # Optional when the stored password is temporary.
    current_password: str | None = Field(default=None, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class UserResponse(BaseModel):
    email: str
    display_name: str | None = None
    auth_type: str
    is_active: bool
    is_temporary_password: bool = False
    last_login: datetime | None = None
    created_at: datetime | None = None


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
