"""
Admin sync routes: run history, schedules, manual trigger and cancel.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies

from . import schemas, service

router = APIRouter()


@router.get("/api/sync/info")
async def sync_info(_: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return service.info()


@router.get("/api/sync/runs")
async def list_runs(
    node_id: str | None = Query(default=None),
    academic_year: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=service.MAX_RUNS_LIMIT),
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    runs = await service.list_runs(node_id=node_id, academic_year=academic_year, run_status=status, limit=limit)
    return {"runs": runs, "count": len(runs)}


@router.get("/api/sync/runs/{run_id}")
async def get_run(run_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.get_run(run_id)


@router.get("/api/sync/runs/{run_id}/schools")
async def list_run_schools(
    run_id: int,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.list_run_schools(run_id, offset=offset, limit=limit)


@router.post("/api/sync/runs/{run_id}/cancel")
async def cancel_run(run_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.cancel_run(run_id)


@router.post("/api/sync/trigger", status_code=202)
async def trigger_sync(
    payload: schemas.TriggerSyncRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.trigger_sync(payload)


@router.get("/api/sync/schedules")
async def list_schedules(_: dict = Depends(auth_dependencies.require_admin)) -> dict:
    schedules = await service.list_schedules()
    return {"schedules": schedules, "count": len(schedules)}


@router.post("/api/sync/schedules", status_code=201)
async def create_schedule(
    payload: schemas.CreateScheduleRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_schedule(payload, created_by=str(current_user["email"]))


@router.put("/api/sync/schedules/{schedule_id}")
async def update_schedule(
    schedule_id: int,
    payload: schemas.UpdateScheduleRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_schedule(schedule_id, payload)


@router.delete("/api/sync/schedules/{schedule_id}")
async def delete_schedule(schedule_id: int, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.delete_schedule(schedule_id)
