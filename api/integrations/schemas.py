"""
ManageBac and Nexquare config schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateManageBacConfigRequest(BaseModel):
    api_token: str = Field(..., min_length=1)
    base_url: str | None = None
    school_name: str | None = Field(default=None, max_length=255)
    school_id: int | None = None


class UpdateManageBacConfigRequest(BaseModel):
    # A masked or blank api_token keeps the stored one.
    api_token: str | None = None
    base_url: str | None = None
    school_name: str | None = Field(default=None, max_length=255)
    school_id: int | None = None
    is_active: bool | None = None


class CreateNexquareConfigRequest(BaseModel):
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    domain_url: str = Field(..., min_length=1)
    school_name: str | None = Field(default=None, max_length=255)
    school_id: str | None = None


class UpdateNexquareConfigRequest(BaseModel):
    client_id: str | None = Field(default=None, min_length=1)
    client_secret: str | None = None
    domain_url: str | None = Field(default=None, min_length=1)
    school_name: str | None = Field(default=None, max_length=255)
    school_id: str | None = None
    is_active: bool | None = None
