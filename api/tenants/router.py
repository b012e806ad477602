"""
Microsoft tenant config routes.

The domain lookup is public (the login page calls it before sign-in) and
rate limited; everything else is admin only.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status

from auth import dependencies as auth_dependencies
from core.rate_limit import TENANT_LOOKUP_LIMIT, limiter

from . import schemas, service

router = APIRouter()


@router.get("/api/auth/microsoft/tenant", response_model=schemas.TenantLookupResponse)
@limiter.limit(TENANT_LOOKUP_LIMIT)
async def lookup_tenant(request: Request, domain: str = Query(..., min_length=1)) -> schemas.TenantLookupResponse:
    return await service.lookup_public(domain)


@router.get("/api/microsoft-tenant-config")
async def list_configs(_: dict = Depends(auth_dependencies.require_admin)) -> list[dict]:
    return await service.list_configs()


@router.post("/api/microsoft-tenant-config", status_code=201)
async def create_config(
    payload: schemas.CreateTenantConfigRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_config(payload, created_by=str(current_user["email"]))


@router.put("/api/microsoft-tenant-config/{config_id}")
async def update_config(
    config_id: int,
    payload: schemas.UpdateTenantConfigRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_config(config_id, payload)


@router.delete("/api/microsoft-tenant-config/{config_id}", status_code=204)
async def delete_config(config_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> Response:
    await service.delete_config(config_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
