"""
User-management schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CreateUserRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    display_name: str | None = Field(default=None, max_length=200)
    auth_type: Literal["Password", "AppRegistration"] = "Password"
    # If omitted for a Password user, a temporary password is generated.
    password: str | None = Field(default=None, max_length=128)


class UpdateUserRequest(BaseModel):
    display_name: str | None = Field(default=None, max_length=200)
    is_active: bool | None = None
