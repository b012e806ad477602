"""
Per-school upstream credentials (admin.managebac_configs, admin.nexquare_configs).
"""

from __future__ import annotations

from typing import Any

from core import db

MB_COLUMNS = "id, api_token, base_url, school_name, school_id, is_active"
NEX_COLUMNS = "id, client_id, client_secret, domain_url, school_name, school_id, is_active"


async def get_active_managebac_config(config_id: int) -> dict | None:
    return await db.fetch_one(
        f"SELECT {MB_COLUMNS} FROM admin.managebac_configs WHERE id = $1 AND is_active",
        config_id,
    )


async def get_active_nexquare_config(config_id: int) -> dict | None:
    return await db.fetch_one(
        f"SELECT {NEX_COLUMNS} FROM admin.nexquare_configs WHERE id = $1 AND is_active",
        config_id,
    )


async def list_active_managebac_configs(config_ids: list[int] | None = None) -> list[dict]:
    """
    Active configs, optionally limited to `config_ids`.
    """
    return await db.fetch_all(
        f"""
        SELECT {MB_COLUMNS} FROM admin.managebac_configs
        WHERE is_active AND ($1::bigint[] IS NULL OR id = ANY($1::bigint[]))
        ORDER BY id
        """,
        config_ids,
    )


async def list_active_nexquare_configs(config_ids: list[int] | None = None) -> list[dict]:
    return await db.fetch_all(
        f"""
        SELECT {NEX_COLUMNS} FROM admin.nexquare_configs
        WHERE is_active AND ($1::bigint[] IS NULL OR id = ANY($1::bigint[]))
        ORDER BY id
        """,
        config_ids,
    )


async def list_managebac_configs_for_nodes(node_ids: list[str]) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT DISTINCT c.id, c.api_token, c.base_url, c.school_name, c.school_id, c.is_active
        FROM admin.managebac_configs c
        JOIN admin.node_school ns ON ns.school_source = 'mb' AND ns.school_id = c.school_id::text
        WHERE c.is_active AND ns.node_id = ANY($1::text[])
        ORDER BY c.id
        """,
        node_ids,
    )


async def list_nexquare_configs_for_nodes(node_ids: list[str]) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT DISTINCT c.id, c.client_id, c.client_secret, c.domain_url, c.school_name, c.school_id, c.is_active
        FROM admin.nexquare_configs c
        JOIN admin.node_school ns ON ns.school_source = 'nex' AND ns.school_id = c.school_id
        WHERE c.is_active AND ns.node_id = ANY($1::text[])
        ORDER BY c.id
        """,
        node_ids,
    )


# Admin CRUD. Rows include inactive configs and timestamps.

MB_ADMIN_COLUMNS = f"{MB_COLUMNS}, created_at, updated_at"
NEX_ADMIN_COLUMNS = f"{NEX_COLUMNS}, created_at, updated_at"

MB_UPDATABLE_COLUMNS = ("api_token", "base_url", "school_name", "school_id", "is_active")
NEX_UPDATABLE_COLUMNS = ("client_id", "client_secret", "domain_url", "school_name", "school_id", "is_active")


async def _update(
    table: str, columns: str, updatable: tuple[str, ...], config_id: int, changes: dict[str, Any]
) -> dict | None:
    fields = [col for col in updatable if col in changes]
    if not fields:
        return await db.fetch_one(f"SELECT {columns} FROM {table} WHERE id = $1", config_id)
    assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(fields, start=2))
    return await db.fetch_one(
        f"""
        UPDATE {table}
        SET {assignments}, updated_at = now()
        WHERE id = $1
        RETURNING {columns}
        """,
        config_id,
        *[changes[col] for col in fields],
    )


async def _delete(table: str, config_id: int) -> bool:
    row = await db.fetch_one(f"DELETE FROM {table} WHERE id = $1 RETURNING id", config_id)
    return row is not None


async def list_managebac_configs() -> list[dict]:
    return await db.fetch_all(
        f"SELECT {MB_ADMIN_COLUMNS} FROM admin.managebac_configs ORDER BY school_name NULLS LAST, id"
    )


async def get_managebac_config(config_id: int) -> dict | None:
    return await db.fetch_one(f"SELECT {MB_ADMIN_COLUMNS} FROM admin.managebac_configs WHERE id = $1", config_id)


async def insert_managebac_config(
    *, api_token: str, base_url: str | None, school_name: str | None, school_id: int | None
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.managebac_configs (api_token, base_url, school_name, school_id, is_active)
        VALUES ($1, $2, $3, $4, true)
        RETURNING {MB_ADMIN_COLUMNS}
        """,
        api_token,
        base_url,
        school_name,
        school_id,
    )
    if row is None:
        raise RuntimeError("Failed to create ManageBac config.")
    return row


async def update_managebac_config(config_id: int, changes: dict[str, Any]) -> dict | None:
    return await _update("admin.managebac_configs", MB_ADMIN_COLUMNS, MB_UPDATABLE_COLUMNS, config_id, changes)


async def delete_managebac_config(config_id: int) -> bool:
    return await _delete("admin.managebac_configs", config_id)


async def list_nexquare_configs() -> list[dict]:
    return await db.fetch_all(
        f"SELECT {NEX_ADMIN_COLUMNS} FROM admin.nexquare_configs ORDER BY school_name NULLS LAST, id"
    )


async def get_nexquare_config(config_id: int) -> dict | None:
    return await db.fetch_one(f"SELECT {NEX_ADMIN_COLUMNS} FROM admin.nexquare_configs WHERE id = $1", config_id)


async def insert_nexquare_config(
    *, client_id: str, client_secret: str, domain_url: str, school_name: str | None, school_id: str | None
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.nexquare_configs (client_id, client_secret, domain_url, school_name, school_id, is_active)
        VALUES ($1, $2, $3, $4, $5, true)
        RETURNING {NEX_ADMIN_COLUMNS}
        """,
        client_id,
        client_secret,
        domain_url,
        school_name,
        school_id,
    )
    if row is None:
        raise RuntimeError("Failed to create Nexquare config.")
    return row


async def update_nexquare_config(config_id: int, changes: dict[str, Any]) -> dict | None:
    return await _update("admin.nexquare_configs", NEX_ADMIN_COLUMNS, NEX_UPDATABLE_COLUMNS, config_id, changes)


async def delete_nexquare_config(config_id: int) -> bool:
    return await _delete("admin.nexquare_configs", config_id)
