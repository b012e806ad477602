"""
Async database access helpers (raw SQL) using asyncpg.

This module owns the connection pool. FastAPI initializes it on startup and
closes it on shutdown (see `api/main.py`). The CLI entrypoint in
`sync/__main__.py` does the same around a single run.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...

Tables live in three schemas: `admin` (users, nodes, access, sync runs),
`mb` (ManageBac mirror) and `nex` (Nexquare mirror). See `sql/schema.sql`.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg

from core.config import env_int

_pool: asyncpg.Pool | None = None


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url() -> str:
    url = os.environ.get("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


async def init_pool() -> None:
    global _pool
    if _pool is not None:
        return None
    _pool = await asyncpg.create_pool(
        dsn=database_url(),
        min_size=env_int("DB_POOL_MIN", 1),
        max_size=env_int("DB_POOL_MAX", 10),
        command_timeout=60,
    )


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return None
    await _pool.close()
    _pool = None


def pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("DB pool is not initialized. Call init_pool() on startup.")
    return _pool


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


async def fetch_one(sql: str, *args: Any) -> dict[str, Any] | None:
    """
    Run a query and return a single row as a dict (or None).
    """
    row = await pool().fetchrow(sql, *args)
    return _record_to_dict(row) if row is not None else None


async def fetch_all(sql: str, *args: Any) -> list[dict[str, Any]]:
    """
    Run a query and return all rows as a list of dicts.
    """
    rows = await pool().fetch(sql, *args)
    return [_record_to_dict(r) for r in rows]


async def fetch_val(sql: str, *args: Any) -> Any:
    return await pool().fetchval(sql, *args)


async def execute(sql: str, *args: Any) -> None:
    """
    Run a statement (INSERT/UPDATE/DELETE/DDL). No result returned.
    """
    await pool().execute(sql, *args)


async def execute_many(sql: str, rows: Iterable[Sequence[Any]]) -> int:
    """
    Run one statement per row inside a single transaction.

    Returns the number of rows sent.
    """
    records = list(rows)
    if not records:
        return 0
    async with pool().acquire() as conn:  # type: asyncpg.Connection
        async with conn.transaction():
            await conn.executemany(sql, records)
    return len(records)


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    async with pool().acquire() as conn:
        async with conn.transaction():
            yield conn


async def ping() -> bool:
    try:
        return (await fetch_val("SELECT 1")) == 1
    except (asyncpg.PostgresError, OSError, RuntimeError):
        return False


def upsert_sql(table: str, fields: Sequence[str], conflict: str, *, touch_updated_at: bool = True) -> str:
    """
    Build `INSERT ... ON CONFLICT (conflict) DO UPDATE` for `fields` in order.

    Placeholders are `$1..$n`; conflict columns are not updated.
    """
    columns = ", ".join(fields)
    placeholders = ", ".join(f"${i}" for i in range(1, len(fields) + 1))
    keys = {c.strip() for c in conflict.split(",")}
    updates = [f"{c} = EXCLUDED.{c}" for c in fields if c not in keys]
    if touch_updated_at:
        updates.append("updated_at = now()")
    return (
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict}) DO UPDATE SET {', '.join(updates)}"
    )
