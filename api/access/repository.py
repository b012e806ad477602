"""
User node access, access groups and group assignments (admin schema).
"""

from __future__ import annotations

from core import db

GROUP_COLUMNS = "group_id, group_name, group_description, created_by, created_at"


async def list_user_access(user_id: str) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT una.user_id, una.node_id, una.department_id, una.created_by, una.created_at,
               d.department_name, n.node_description
        FROM admin.user_node_access una
        JOIN admin.departments d ON d.department_id = una.department_id
        JOIN admin.nodes n ON n.node_id = una.node_id
        WHERE una.user_id = $1
        ORDER BY una.node_id, una.department_id
        """,
        user_id,
    )


async def list_user_school_rows(user_id: str) -> list[dict]:
    """
    One row per (granting node, school, department) reachable by the user.

    Access comes from direct grants and from the user's groups. A grant on a
    node covers every school under that node's subtree.
    """
    return await db.fetch_all(
        """
        WITH RECURSIVE grants AS (
          SELECT node_id, department_id
          FROM admin.user_node_access
          WHERE user_id = $1
          UNION
          SELECT gna.node_id, gna.department_id
          FROM admin.group_node_access gna
          JOIN admin.user_groups ug ON ug.group_id = gna.group_id
          WHERE ug.user_id = $1
        ),
        tree AS (
          SELECT node_id AS root_id, node_id FROM admin.nodes
          WHERE node_id IN (SELECT node_id FROM grants)
          UNION
          SELECT t.root_id, n.node_id
          FROM admin.nodes n
          JOIN tree t ON n.parent_node_id = t.node_id
        )
        SELECT DISTINCT g.node_id, ns.school_id, ns.school_source, g.department_id
        FROM grants g
        JOIN tree t ON t.root_id = g.node_id
        JOIN admin.node_school ns ON ns.node_id = t.node_id
        ORDER BY g.node_id, ns.school_source, ns.school_id, g.department_id
        """,
        user_id,
    )


async def node_exists(node_id: str) -> bool:
    return (await db.fetch_val("SELECT 1 FROM admin.nodes WHERE node_id = $1", node_id)) is not None


async def count_departments(department_ids: list[str]) -> int:
    return int(
        await db.fetch_val(
            "SELECT count(*) FROM admin.departments WHERE department_id = ANY($1::text[])",
            department_ids,
        )
        or 0
    )


async def insert_user_access(
    *, user_id: str, node_id: str, department_ids: list[str], created_by: str | None
) -> int:
    return await db.execute_many(
        """
        INSERT INTO admin.user_node_access (user_id, node_id, department_id, created_by)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (user_id, node_id, department_id) DO NOTHING
        """,
        [(user_id, node_id, dept_id, created_by) for dept_id in department_ids],
    )


async def delete_node_access(*, user_id: str, node_id: str) -> int:
    rows = await db.fetch_all(
        """
        DELETE FROM admin.user_node_access
        WHERE user_id = $1 AND node_id = $2
        RETURNING department_id
        """,
        user_id,
        node_id,
    )
    return len(rows)


async def delete_department_access(*, user_id: str, node_id: str, department_id: str) -> int:
    rows = await db.fetch_all(
        """
        DELETE FROM admin.user_node_access
        WHERE user_id = $1 AND node_id = $2 AND department_id = $3
        RETURNING department_id
        """,
        user_id,
        node_id,
        department_id,
    )
    return len(rows)


# Access groups


async def list_groups() -> list[dict]:
    return await db.fetch_all(f"SELECT {GROUP_COLUMNS} FROM admin.access_groups ORDER BY group_name")


async def get_group(group_id: str) -> dict | None:
    return await db.fetch_one(f"SELECT {GROUP_COLUMNS} FROM admin.access_groups WHERE group_id = $1", group_id)


async def insert_group(
    *, group_id: str, group_name: str, group_description: str | None, created_by: str | None
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.access_groups (group_id, group_name, group_description, created_by)
        VALUES ($1, $2, $3, $4)
        RETURNING {GROUP_COLUMNS}
        """,
        group_id,
        group_name,
        group_description,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to create access group.")
    return row


async def update_group(group_id: str, *, group_name: str, group_description: str | None) -> dict | None:
    return await db.fetch_one(
        f"""
        UPDATE admin.access_groups
        SET group_name = $2, group_description = $3
        WHERE group_id = $1
        RETURNING {GROUP_COLUMNS}
        """,
        group_id,
        group_name,
        group_description,
    )


async def delete_group(group_id: str) -> bool:
    # group_node_access, group_page_access and user_groups cascade.
    row = await db.fetch_one(
        "DELETE FROM admin.access_groups WHERE group_id = $1 RETURNING group_id",
        group_id,
    )
    return row is not None


async def list_group_nodes(group_id: str) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT group_id, node_id, department_id
        FROM admin.group_node_access
        WHERE group_id = $1
        ORDER BY node_id, department_id
        """,
        group_id,
    )


async def replace_group_nodes(group_id: str, pairs: list[tuple[str, str]], *, created_by: str | None) -> None:
    async with db.transaction() as conn:
        await conn.execute("DELETE FROM admin.group_node_access WHERE group_id = $1", group_id)
        if pairs:
            await conn.executemany(
                """
                INSERT INTO admin.group_node_access (group_id, node_id, department_id, created_by)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT DO NOTHING
                """,
                [(group_id, node_id, dept_id, created_by) for node_id, dept_id in pairs],
            )


async def list_group_pages(group_id: str) -> list[str]:
    rows = await db.fetch_all(
        "SELECT item_id FROM admin.group_page_access WHERE group_id = $1 ORDER BY item_id",
        group_id,
    )
    return [str(r["item_id"]) for r in rows]


async def replace_group_pages(group_id: str, item_ids: list[str], *, created_by: str | None) -> None:
    async with db.transaction() as conn:
        await conn.execute("DELETE FROM admin.group_page_access WHERE group_id = $1", group_id)
        if item_ids:
            await conn.executemany(
                """
                INSERT INTO admin.group_page_access (group_id, item_id, created_by)
                VALUES ($1, $2, $3)
                ON CONFLICT DO NOTHING
                """,
                [(group_id, item_id, created_by) for item_id in item_ids],
            )


async def list_user_groups(user_id: str) -> list[str]:
    rows = await db.fetch_all(
        "SELECT group_id FROM admin.user_groups WHERE user_id = $1 ORDER BY group_id",
        user_id,
    )
    return [str(r["group_id"]) for r in rows]


async def replace_user_groups(user_id: str, group_ids: list[str], *, created_by: str | None) -> None:
    async with db.transaction() as conn:
        await conn.execute("DELETE FROM admin.user_groups WHERE user_id = $1", user_id)
        if group_ids:
            await conn.executemany(
                """
                INSERT INTO admin.user_groups (user_id, group_id, created_by)
                VALUES ($1, $2, $3)
                ON CONFLICT DO NOTHING
                """,
                [(user_id, group_id, created_by) for group_id in group_ids],
            )
