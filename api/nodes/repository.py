"""
Node hierarchy and node/school assignment SQL.
"""

from __future__ import annotations

from core import db

NODE_COLUMNS = """
    node_id, node_description, is_head_office, is_school_node,
    parent_node_id, created_by, created_at, updated_at
"""


async def list_nodes() -> list[dict]:
    return await db.fetch_all(f"SELECT {NODE_COLUMNS} FROM admin.nodes ORDER BY node_id")


async def get_node(node_id: str) -> dict | None:
    return await db.fetch_one(f"SELECT {NODE_COLUMNS} FROM admin.nodes WHERE node_id = $1", node_id)


async def get_head_office(*, exclude_node_id: str | None = None) -> dict | None:
    return await db.fetch_one(
        """
        SELECT node_id
        FROM admin.nodes
        WHERE is_head_office
          AND ($1::text IS NULL OR node_id <> $1)
        LIMIT 1
        """,
        exclude_node_id,
    )


async def insert_node(
    *,
    node_id: str,
    node_description: str,
    is_head_office: bool,
    is_school_node: bool,
    parent_node_id: str | None,
    created_by: str | None,
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.nodes
          (node_id, node_description, is_head_office, is_school_node, parent_node_id, created_by)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {NODE_COLUMNS}
        """,
        node_id,
        node_description,
        is_head_office,
        is_school_node,
        parent_node_id,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to create node.")
    return row


async def update_node(
    node_id: str,
    *,
    node_description: str | None,
    is_head_office: bool | None,
    is_school_node: bool | None,
    parent_node_id: str | None,
    clear_parent: bool,
) -> dict | None:
    return await db.fetch_one(
        f"""
        UPDATE admin.nodes
        SET node_description = COALESCE($2, node_description),
            is_head_office = COALESCE($3, is_head_office),
            is_school_node = COALESCE($4, is_school_node),
            parent_node_id = CASE WHEN $6 THEN NULL ELSE COALESCE($5, parent_node_id) END,
            updated_at = now()
        WHERE node_id = $1
        RETURNING {NODE_COLUMNS}
        """,
        node_id,
        node_description,
        is_head_office,
        is_school_node,
        parent_node_id,
        clear_parent,
    )


async def descendant_ids(node_ids: list[str]) -> list[str]:
    """
    Return the given nodes plus every node below them.
    """
    if not node_ids:
        return []
    rows = await db.fetch_all(
        """
        WITH RECURSIVE tree AS (
          SELECT node_id FROM admin.nodes WHERE node_id = ANY($1::text[])
          UNION
          SELECT n.node_id
          FROM admin.nodes n
          JOIN tree t ON n.parent_node_id = t.node_id
        )
        SELECT node_id FROM tree
        """,
        node_ids,
    )
    return [str(r["node_id"]) for r in rows]


async def list_departments() -> list[dict]:
    return await db.fetch_all(
        "SELECT department_id, department_name FROM admin.departments ORDER BY department_id"
    )


# Node/school assignments


async def get_school_assignment(school_id: str, school_source: str) -> dict | None:
    return await db.fetch_one(
        """
        SELECT ns.node_id, ns.school_id, ns.school_source, ns.created_at, n.node_description
        FROM admin.node_school ns
        JOIN admin.nodes n ON n.node_id = ns.node_id
        WHERE ns.school_id = $1 AND ns.school_source = $2
        """,
        school_id,
        school_source,
    )


async def school_exists(school_id: str, school_source: str) -> bool:
    if school_source == "mb":
        if not school_id.isdigit():
            return False
        row = await db.fetch_one("SELECT 1 AS ok FROM mb.schools WHERE id = $1", int(school_id))
    else:
        row = await db.fetch_one("SELECT 1 AS ok FROM nex.schools WHERE sourced_id = $1", school_id)
    return row is not None


async def insert_school_assignment(
    *, node_id: str, school_id: str, school_source: str, created_by: str | None
) -> dict:
    row = await db.fetch_one(
        """
        INSERT INTO admin.node_school (node_id, school_id, school_source, created_by)
        VALUES ($1, $2, $3, $4)
        RETURNING node_id, school_id, school_source, created_at
        """,
        node_id,
        school_id,
        school_source,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to assign school.")
    return row


async def delete_school_assignment(*, node_id: str, school_id: str, school_source: str) -> bool:
    row = await db.fetch_one(
        """
        DELETE FROM admin.node_school
        WHERE node_id = $1 AND school_id = $2 AND school_source = $3
        RETURNING node_id
        """,
        node_id,
        school_id,
        school_source,
    )
    return row is not None


async def list_node_schools(node_id: str) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT ns.school_id, ns.school_source, ns.created_at,
               COALESCE(mbs.name, nxs.name) AS school_name
        FROM admin.node_school ns
        LEFT JOIN mb.schools mbs
          ON ns.school_source = 'mb' AND mbs.id::text = ns.school_id
        LEFT JOIN nex.schools nxs
          ON ns.school_source = 'nex' AND nxs.sourced_id = ns.school_id
        WHERE ns.node_id = $1
        ORDER BY ns.school_source, school_name
        """,
        node_id,
    )


async def list_available_schools() -> list[dict]:
    return await db.fetch_all(
        """
        SELECT s.school_id, s.school_source, s.school_name, ns.node_id
        FROM (
          SELECT id::text AS school_id, 'mb' AS school_source, name AS school_name FROM mb.schools
          UNION ALL
          SELECT sourced_id AS school_id, 'nex' AS school_source, name AS school_name FROM nex.schools
        ) s
        LEFT JOIN admin.node_school ns
          ON ns.school_id = s.school_id AND ns.school_source = s.school_source
        ORDER BY s.school_source, s.school_name
        """
    )
