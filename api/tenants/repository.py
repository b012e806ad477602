"""
Microsoft tenant config SQL (admin.microsoft_tenant_config).
"""

from __future__ import annotations

from typing import Any

from core import db

TENANT_COLUMNS = """
    tenant_config_id, domain, authority_tenant, client_id, client_secret,
    display_name, is_active, created_by, created_at, updated_at
"""

# Columns an update may touch, in payload field order.
UPDATABLE_COLUMNS = ("domain", "authority_tenant", "client_id", "client_secret", "display_name", "is_active")


async def list_configs() -> list[dict]:
    return await db.fetch_all(f"SELECT {TENANT_COLUMNS} FROM admin.microsoft_tenant_config ORDER BY domain")


async def get_config(config_id: int) -> dict | None:
    return await db.fetch_one(
        f"SELECT {TENANT_COLUMNS} FROM admin.microsoft_tenant_config WHERE tenant_config_id = $1",
        config_id,
    )


async def get_active_by_domain(domain: str) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {TENANT_COLUMNS}
        FROM admin.microsoft_tenant_config
        WHERE lower(trim(domain)) = $1 AND is_active
        LIMIT 1
        """,
        domain,
    )


async def get_active_by_client_id(client_id: str) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {TENANT_COLUMNS}
        FROM admin.microsoft_tenant_config
        WHERE client_id = $1 AND is_active
        LIMIT 1
        """,
        client_id,
    )


async def insert_config(
    *,
    domain: str,
    authority_tenant: str | None,
    client_id: str,
    client_secret: str,
    display_name: str | None,
    created_by: str | None,
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.microsoft_tenant_config
          (domain, authority_tenant, client_id, client_secret, display_name, is_active, created_by)
        VALUES ($1, $2, $3, $4, $5, true, $6)
        RETURNING {TENANT_COLUMNS}
        """,
        domain,
        authority_tenant,
        client_id,
        client_secret,
        display_name,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to create tenant config.")
    return row


async def update_config(config_id: int, changes: dict[str, Any]) -> dict | None:
    fields = [col for col in UPDATABLE_COLUMNS if col in changes]
    if not fields:
        return await get_config(config_id)
    assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(fields, start=2))
    return await db.fetch_one(
        f"""
        UPDATE admin.microsoft_tenant_config
        SET {assignments}, updated_at = now()
        WHERE tenant_config_id = $1
        RETURNING {TENANT_COLUMNS}
        """,
        config_id,
        *[changes[col] for col in fields],
    )


async def delete_config(config_id: int) -> bool:
    row = await db.fetch_one(
        "DELETE FROM admin.microsoft_tenant_config WHERE tenant_config_id = $1 RETURNING tenant_config_id",
        config_id,
    )
    return row is not None
