"""
Dashboard access checks against Superset's own Postgres database.

Optional: without SUPERSET_DATABASE_URL every dashboard is allowed.
Uses Superset's ab_user, ab_user_role, ab_role and dashboard_roles tables.
"""

from __future__ import annotations

import logging
import re

import asyncpg

from core.config import env_str

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

_pool: asyncpg.Pool | None = None


def database_url() -> str:
    return env_str("SUPERSET_DATABASE_URL")


def is_enabled() -> bool:
    return bool(database_url())


async def _get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(dsn=database_url(), min_size=0, max_size=2)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def _fetch_role_counts(email: str, dashboard_id: str) -> dict:
    """
    Role counts for the user and dashboard, or `{"reason": ...}` when either is unknown.
    """
    pool = await _get_pool()
    async with pool.acquire() as conn:
        user_id = await conn.fetchval(
            "SELECT id FROM ab_user WHERE (username = $1 OR email = $1) AND active = true LIMIT 1",
            email,
        )
        if user_id is None:
            return {"reason": "user_not_found"}

        if UUID_RE.match(dashboard_id):
            dashboard_pk = await conn.fetchval("SELECT id FROM dashboards WHERE uuid = $1::uuid LIMIT 1", dashboard_id)
        elif dashboard_id.isdigit():
            dashboard_pk = await conn.fetchval("SELECT id FROM dashboards WHERE id = $1 LIMIT 1", int(dashboard_id))
        else:
            dashboard_pk = None
        if dashboard_pk is None:
            return {"reason": "dashboard_not_found"}

        row = await conn.fetchrow(
            """
            WITH user_roles AS (
              SELECT role_id FROM ab_user_role WHERE user_id = $1
            ),
            dashboard_role_ids AS (
              SELECT role_id FROM dashboard_roles WHERE dashboard_id = $2
            ),
            admin_role AS (
              SELECT id FROM ab_role WHERE name = 'Admin' LIMIT 1
            )
            SELECT
              (SELECT count(*) FROM dashboard_role_ids) AS dashboard_role_count,
              (SELECT count(*) FROM user_roles ur JOIN dashboard_role_ids dr ON ur.role_id = dr.role_id) AS matching_roles,
              (SELECT count(*) FROM user_roles ur JOIN admin_role ar ON ur.role_id = ar.id) AS is_admin
            """,
            user_id,
            dashboard_pk,
        )
    return dict(row) if row is not None else {"dashboard_role_count": 0, "matching_roles": 0, "is_admin": 0}


def decide(counts: dict) -> dict:
    """
    Admin role, a dashboard without roles, or a shared role all allow access.
    """
    if "reason" in counts:
        return {"allowed": False, "reason": counts["reason"]}
    if int(counts.get("is_admin") or 0) > 0:
        return {"allowed": True}
    if int(counts.get("dashboard_role_count") or 0) == 0:
        return {"allowed": True}
    if int(counts.get("matching_roles") or 0) > 0:
        return {"allowed": True}
    return {"allowed": False, "reason": "no_dashboard_access"}


async def check_dashboard_access(email: str, dashboard_id: str | int) -> dict:
    if not is_enabled():
        return {"allowed": True}
    try:
        counts = await _fetch_role_counts(email.strip().lower(), str(dashboard_id).strip())
    except (asyncpg.PostgresError, OSError) as e:
        logger.error("superset_access_check_failed email=%s dashboard_id=%s error=%s", email, dashboard_id, e)
        return {"allowed": False, "reason": "access_check_failed"}
    result = decide(counts)
    if not result["allowed"]:
        logger.info(
            "superset_access_denied email=%s dashboard_id=%s reason=%s",
            email,
            dashboard_id,
            result["reason"],
        )
    return result
