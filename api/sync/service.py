"""
Run history, schedule management, manual triggers and cancellation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import Any

from fastapi import HTTPException, status

from scheduler import service as scheduler_service

from . import orchestrator, repository, schemas

logger = logging.getLogger(__name__)

MAX_RUNS_LIMIT = 200
CANCELLABLE_STATUSES = ("pending", "running")
NOT_LOCAL_CANCEL_MESSAGE = "Cancelled (run was not in this process)"

# Strong refs so background runs are not garbage collected mid-flight.
_background_tasks: set[asyncio.Task] = set()


def _run_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync run not found")


def _schedule_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")


def _endpoints_text(endpoints: list[str] | None) -> str | None:
    return json.dumps(endpoints) if endpoints else None


def _schedule_out(row: dict) -> dict:
    out = dict(row)
    out["endpoints_mb"] = scheduler_service.parse_endpoints(row.get("endpoints_mb"))
    out["endpoints_nex"] = scheduler_service.parse_endpoints(row.get("endpoints_nex"))
    return out


def info() -> dict:
    return {
        "endpoints_mb": list(orchestrator.MB_ENDPOINTS),
        "endpoints_nex": list(orchestrator.NEX_ENDPOINTS),
        "scheduler": {"enabled": scheduler_service.is_enabled(), "timezone": scheduler_service.timezone()},
    }


# Runs


async def list_runs(
    *,
    node_id: str | None,
    academic_year: str | None,
    run_status: str | None,
    limit: int,
) -> list[dict]:
    limit = max(1, min(limit, MAX_RUNS_LIMIT))
    return await repository.list_runs(node_id=node_id, academic_year=academic_year, status=run_status, limit=limit)


async def get_run(run_id: int) -> dict:
    run = await repository.get_run(run_id)
    if run is None:
        raise _run_not_found()
    run["schools"] = await repository.list_run_schools(run_id)
    return run


async def list_run_schools(run_id: int, *, offset: int, limit: int) -> dict:
    if await repository.get_run(run_id) is None:
        raise _run_not_found()
    schools = await repository.list_run_schools(run_id, offset=offset, limit=limit)
    total = await repository.count_run_schools(run_id)
    return {"schools": schools, "total": total, "offset": offset, "limit": limit}


async def _run_in_background(params: orchestrator.SyncParams) -> None:
    run_id = params.existing_run_id
    try:
        await orchestrator.run_sync(params)
    except Exception as e:
        logger.exception("sync_run_crashed run_id=%s", run_id)
        try:
            await repository.fail_run(run_id, (str(e) or e.__class__.__name__)[: orchestrator.ERROR_MESSAGE_MAX_CHARS])
        except Exception:
            logger.exception("sync_run_fail_mark_failed run_id=%s", run_id)
    finally:
        orchestrator.unregister_run(run_id)


async def trigger_sync(payload: schemas.TriggerSyncRequest) -> dict:
    node_ids = payload.resolved_node_ids()
    if not node_ids and not payload.all:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="node_ids (or node_id) or all=true is required",
        )

    academic_year = payload.academic_year or str(date.today().year)
    run_id = await repository.insert_run(
        schedule_id=None,
        node_id="all" if payload.all else ",".join(node_ids),
        academic_year=academic_year,
        status="pending",
        triggered_by="manual",
    )
    params = orchestrator.SyncParams(
        node_ids=node_ids or None,
        academic_year=academic_year,
        endpoints_mb=payload.endpoints_mb,
        endpoints_nex=payload.endpoints_nex,
        include_descendants=payload.include_descendants,
        all=payload.all,
        triggered_by="manual",
        existing_run_id=run_id,
        cancel_event=orchestrator.register_run(run_id),
    )
    task = asyncio.create_task(_run_in_background(params))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    logger.info("sync_triggered run_id=%s nodes=%s all=%s", run_id, len(node_ids), payload.all)
    return {"success": True, "runId": run_id, "status": "started"}


async def cancel_run(run_id: int) -> dict:
    run = await repository.get_run(run_id)
    if run is None:
        raise _run_not_found()
    if run["status"] not in CANCELLABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Run cannot be cancelled (status: {run['status']})",
        )

    if orchestrator.request_cancel(run_id):
        logger.info("sync_cancel_requested run_id=%s", run_id)
        return {"success": True, "runId": run_id, "status": "cancelling"}

    await repository.cancel_run(run_id, NOT_LOCAL_CANCEL_MESSAGE)
    await repository.skip_run_schools(run_id, "Cancelled", statuses=CANCELLABLE_STATUSES)
    logger.info("sync_run_marked_cancelled run_id=%s", run_id)
    return {"success": True, "runId": run_id, "status": "cancelled"}


# Schedules


def _require_valid_cron(cron_expression: str) -> str:
    expression = cron_expression.strip()
    if not scheduler_service.validate_cron(expression):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cron expression")
    return expression


async def list_schedules() -> list[dict]:
    return [_schedule_out(row) for row in await repository.list_schedules()]


async def create_schedule(payload: schemas.CreateScheduleRequest, *, created_by: str | None) -> dict:
    row = await repository.insert_schedule(
        node_id=payload.node_id.strip(),
        academic_year=payload.academic_year.strip(),
        cron_expression=_require_valid_cron(payload.cron_expression),
        endpoints_mb=_endpoints_text(payload.endpoints_mb),
        endpoints_nex=_endpoints_text(payload.endpoints_nex),
        include_descendants=payload.include_descendants,
        created_by=created_by,
    )
    await scheduler_service.reload()
    logger.info("schedule_created schedule_id=%s node_id=%s", row["id"], row["node_id"])
    return _schedule_out(row)


async def update_schedule(schedule_id: int, payload: schemas.UpdateScheduleRequest) -> dict:
    fields: dict[str, Any] = payload.model_dump(exclude_unset=True)
    if "cron_expression" in fields:
        if fields["cron_expression"] is None:
            del fields["cron_expression"]
        else:
            fields["cron_expression"] = _require_valid_cron(fields["cron_expression"])
    for key in ("endpoints_mb", "endpoints_nex"):
        if key in fields:
            fields[key] = _endpoints_text(fields[key])
    for key in ("node_id", "academic_year", "include_descendants", "is_active"):
        if key in fields and fields[key] is None:
            del fields[key]
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    row = await repository.update_schedule(schedule_id, fields)
    if row is None:
        raise _schedule_not_found()
    await scheduler_service.reload()
    logger.info("schedule_updated schedule_id=%s fields=%s", schedule_id, ",".join(sorted(fields)))
    return _schedule_out(row)


async def delete_schedule(schedule_id: int) -> dict:
    if not await repository.delete_schedule(schedule_id):
        raise _schedule_not_found()
    await scheduler_service.reload()
    logger.info("schedule_deleted schedule_id=%s", schedule_id)
    return {"success": True}
