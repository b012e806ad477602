"""
Sync run history and schedules (admin.sync_runs, admin.sync_run_schools,
admin.sync_schedules).
"""

from __future__ import annotations

from typing import Any

from core import db

RUN_COLUMNS = """
    id, schedule_id, node_id, academic_year, status, started_at, completed_at,
    total_schools, schools_succeeded, schools_failed, triggered_by, error_summary, created_at
"""

RUN_SCHOOL_COLUMNS = """
    id, sync_run_id, school_id, school_source, config_id, school_name, status,
    started_at, completed_at, error_message, current_endpoint
"""

SCHEDULE_COLUMNS = """
    id, node_id, academic_year, cron_expression, endpoints_mb, endpoints_nex,
    include_descendants, is_active, created_at, updated_at, created_by
"""

UPDATABLE_SCHEDULE_COLUMNS = (
    "node_id",
    "academic_year",
    "cron_expression",
    "endpoints_mb",
    "endpoints_nex",
    "include_descendants",
    "is_active",
)


# Runs


async def insert_run(
    *,
    schedule_id: int | None,
    node_id: str | None,
    academic_year: str,
    status: str,
    triggered_by: str,
) -> int:
    run_id = await db.fetch_val(
        """
        INSERT INTO admin.sync_runs
          (schedule_id, node_id, academic_year, status, started_at,
           total_schools, schools_succeeded, schools_failed, triggered_by)
        VALUES ($1, $2, $3, $4, now(), 0, 0, 0, $5)
        RETURNING id
        """,
        schedule_id,
        node_id,
        academic_year,
        status,
        triggered_by,
    )
    if run_id is None:
        raise RuntimeError("Failed to create sync run.")
    return int(run_id)


async def mark_run_running(run_id: int) -> None:
    await db.execute("UPDATE admin.sync_runs SET status = 'running', started_at = now() WHERE id = $1", run_id)


async def set_total_schools(run_id: int, total: int) -> None:
    await db.execute("UPDATE admin.sync_runs SET total_schools = $2 WHERE id = $1", run_id, total)


async def finish_run(
    run_id: int,
    *,
    status: str,
    succeeded: int,
    failed: int,
    error_summary: str | None,
) -> None:
    await db.execute(
        """
        UPDATE admin.sync_runs
        SET status = $2, completed_at = now(), schools_succeeded = $3, schools_failed = $4, error_summary = $5
        WHERE id = $1
        """,
        run_id,
        status,
        succeeded,
        failed,
        error_summary,
    )


async def fail_run(run_id: int, error_summary: str) -> None:
    await db.execute(
        "UPDATE admin.sync_runs SET status = 'failed', completed_at = now(), error_summary = $2 WHERE id = $1",
        run_id,
        error_summary,
    )


async def cancel_run(run_id: int, error_summary: str) -> None:
    await db.execute(
        "UPDATE admin.sync_runs SET status = 'cancelled', completed_at = now(), error_summary = $2 WHERE id = $1",
        run_id,
        error_summary,
    )


async def get_run(run_id: int) -> dict | None:
    return await db.fetch_one(f"SELECT {RUN_COLUMNS} FROM admin.sync_runs WHERE id = $1", run_id)


async def list_runs(
    *,
    node_id: str | None = None,
    academic_year: str | None = None,
    status: str | None = None,
    limit: int = 50,
) -> list[dict]:
    return await db.fetch_all(
        f"""
        SELECT {RUN_COLUMNS}
        FROM admin.sync_runs
        WHERE ($1::text IS NULL OR node_id = $1)
          AND ($2::text IS NULL OR academic_year = $2)
          AND ($3::text IS NULL OR status = $3)
        ORDER BY started_at DESC
        LIMIT $4
        """,
        node_id,
        academic_year,
        status,
        limit,
    )


# Run schools


async def insert_run_school(
    *,
    run_id: int,
    school_id: str,
    school_source: str,
    config_id: int,
    school_name: str | None,
) -> int:
    row_id = await db.fetch_val(
        """
        INSERT INTO admin.sync_run_schools (sync_run_id, school_id, school_source, config_id, school_name, status)
        VALUES ($1, $2, $3, $4, $5, 'pending')
        RETURNING id
        """,
        run_id,
        school_id,
        school_source,
        config_id,
        school_name,
    )
    if row_id is None:
        raise RuntimeError("Failed to create sync run school.")
    return int(row_id)


async def mark_run_schools_running(run_id: int) -> None:
    await db.execute(
        "UPDATE admin.sync_run_schools SET status = 'running', started_at = now() WHERE sync_run_id = $1",
        run_id,
    )


async def set_current_endpoint(school_run_id: int, endpoint: str | None) -> None:
    await db.execute("UPDATE admin.sync_run_schools SET current_endpoint = $2 WHERE id = $1", school_run_id, endpoint)


async def complete_run_school(school_run_id: int) -> None:
    await db.execute(
        """
        UPDATE admin.sync_run_schools
        SET status = 'completed', completed_at = now(), current_endpoint = NULL
        WHERE id = $1
        """,
        school_run_id,
    )


async def fail_run_school(school_run_id: int, error_message: str) -> None:
    await db.execute(
        "UPDATE admin.sync_run_schools SET status = 'failed', completed_at = now(), error_message = $2 WHERE id = $1",
        school_run_id,
        error_message,
    )


async def skip_run_schools(run_id: int, message: str, statuses: tuple[str, ...] = ("running",)) -> None:
    await db.execute(
        """
        UPDATE admin.sync_run_schools
        SET status = 'skipped', completed_at = now(), error_message = $2
        WHERE sync_run_id = $1 AND status = ANY($3::text[])
        """,
        run_id,
        message,
        list(statuses),
    )


async def list_run_schools(run_id: int, *, offset: int = 0, limit: int | None = None) -> list[dict]:
    return await db.fetch_all(
        f"""
        SELECT {RUN_SCHOOL_COLUMNS}
        FROM admin.sync_run_schools
        WHERE sync_run_id = $1
        ORDER BY id
        OFFSET $2 LIMIT $3
        """,
        run_id,
        offset,
        limit,
    )


async def count_run_schools(run_id: int) -> int:
    return int(await db.fetch_val("SELECT count(*) FROM admin.sync_run_schools WHERE sync_run_id = $1", run_id) or 0)


# Schedules


async def list_schedules() -> list[dict]:
    return await db.fetch_all(f"SELECT {SCHEDULE_COLUMNS} FROM admin.sync_schedules ORDER BY node_id, academic_year")


async def list_active_schedules() -> list[dict]:
    return await db.fetch_all(
        f"SELECT {SCHEDULE_COLUMNS} FROM admin.sync_schedules WHERE is_active ORDER BY id"
    )


async def insert_schedule(
    *,
    node_id: str,
    academic_year: str,
    cron_expression: str,
    endpoints_mb: str | None,
    endpoints_nex: str | None,
    include_descendants: bool,
    created_by: str | None,
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.sync_schedules
          (node_id, academic_year, cron_expression, endpoints_mb, endpoints_nex, include_descendants, created_by)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        RETURNING {SCHEDULE_COLUMNS}
        """,
        node_id,
        academic_year,
        cron_expression,
        endpoints_mb,
        endpoints_nex,
        include_descendants,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to create schedule.")
    return row


async def update_schedule(schedule_id: int, fields: dict[str, Any]) -> dict | None:
    """
    Update the whitelisted columns present in `fields`.
    """
    columns = [c for c in UPDATABLE_SCHEDULE_COLUMNS if c in fields]
    assignments = [f"{c} = ${i}" for i, c in enumerate(columns, start=2)]
    assignments.append("updated_at = now()")
    return await db.fetch_one(
        f"""
        UPDATE admin.sync_schedules SET {', '.join(assignments)}
        WHERE id = $1
        RETURNING {SCHEDULE_COLUMNS}
        """,
        schedule_id,
        *(fields[c] for c in columns),
    )


async def delete_schedule(schedule_id: int) -> bool:
    """
    Delete a schedule; its runs are kept with schedule_id set to NULL.
    """
    async with db.transaction() as conn:
        await conn.execute("UPDATE admin.sync_runs SET schedule_id = NULL WHERE schedule_id = $1", schedule_id)
        deleted = await conn.fetchval(
            "DELETE FROM admin.sync_schedules WHERE id = $1 RETURNING id",
            schedule_id,
        )
    return deleted is not None
