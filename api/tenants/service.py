"""
Microsoft tenant configs: admin CRUD and the public login lookup.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from . import repository, schemas

logger = logging.getLogger(__name__)

AUTHORITY_BASE_URL = "https://login.microsoftonline.com"
SECRET_MASK = "••••••••"


def normalize_domain(domain: str | None) -> str:
    return (domain or "").strip().lower()


def mask_secret(row: dict) -> dict:
    return {**row, "client_secret": SECRET_MASK if row.get("client_secret") else ""}


def authority_for(row: dict) -> str:
    tenant = row.get("authority_tenant") or row.get("domain")
    return f"{AUTHORITY_BASE_URL}/{tenant}"


async def list_configs() -> list[dict]:
    return [mask_secret(row) for row in await repository.list_configs()]


async def get_by_domain(domain: str) -> dict | None:
    normalized = normalize_domain(domain)
    if not normalized:
        return None
    return await repository.get_active_by_domain(normalized)


async def get_by_client_id(client_id: str) -> dict | None:
    return await repository.get_active_by_client_id(client_id.strip())


async def lookup_public(domain: str) -> schemas.TenantLookupResponse:
    row = await get_by_domain(domain)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Microsoft sign-in is not configured for this domain",
        )
    return schemas.TenantLookupResponse(
        clientId=str(row["client_id"]),
        authority=authority_for(row),
        displayName=row.get("display_name"),
    )


async def create_config(payload: schemas.CreateTenantConfigRequest, *, created_by: str | None) -> dict:
    domain = normalize_domain(payload.domain)
    if await get_by_domain(domain) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A config for this domain already exists",
        )
    row = await repository.insert_config(
        domain=domain,
        authority_tenant=payload.authority_tenant or None,
        client_id=payload.client_id.strip(),
        client_secret=payload.client_secret,
        display_name=payload.display_name or None,
        created_by=created_by,
    )
    logger.info("tenant_config_created domain=%s by=%s", domain, created_by)
    return mask_secret(row)


async def update_config(config_id: int, payload: schemas.UpdateTenantConfigRequest) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    for key in ("domain", "client_id"):
        if changes.get(key) is not None:
            changes[key] = changes[key].strip()
    for key in ("authority_tenant", "display_name"):
        if key in changes:
            changes[key] = changes[key] or None
    if "is_active" in changes and changes["is_active"] is None:
        del changes["is_active"]

    row = await repository.update_config(config_id, changes)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant config not found")
    return mask_secret(row)


async def delete_config(config_id: int) -> None:
    if not await repository.delete_config(config_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant config not found")
