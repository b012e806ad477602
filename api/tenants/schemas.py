"""
Microsoft tenant config schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateTenantConfigRequest(BaseModel):
    domain: str = Field(..., min_length=1, max_length=255)
    authority_tenant: str | None = None
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    display_name: str | None = None


class UpdateTenantConfigRequest(BaseModel):
    domain: str | None = Field(default=None, min_length=1, max_length=255)
    authority_tenant: str | None = None
    client_id: str | None = Field(default=None, min_length=1)
    client_secret: str | None = Field(default=None, min_length=1)
    display_name: str | None = None
    is_active: bool | None = None


class TenantLookupResponse(BaseModel):
    clientId: str
    authority: str
    displayName: str | None = None
