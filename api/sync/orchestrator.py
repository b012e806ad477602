"""
Sync orchestrator: run ManageBac and Nexquare syncs for a scope with run tracking.

- One `admin.sync_runs` row per run, one `admin.sync_run_schools` row per school
- Two tracks (MB and NEX) run concurrently; schools run one at a time per track
- A failing school is recorded and the track moves on
- Cancellation is checked before every endpoint
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from managebac.client import ManageBacClient
from managebac.service import ManageBacSync
from nexquare.client import NexquareClient
from nexquare.service import NexquareSync

from . import repository, scope

logger = logging.getLogger(__name__)

MB_ENDPOINTS = ["school", "academic-years", "grades", "subjects", "teachers", "students", "classes", "year-groups"]
NEX_ENDPOINTS = [
    "schools",
    "students",
    "staff",
    "classes",
    "allocation-master",
    "student-allocations",
    "staff-allocations",
    "daily-plans",
    "daily-attendance",
    "student-assessments",
]

ERROR_MESSAGE_MAX_CHARS = 4000
ERROR_SUMMARY_MAX_ENTRIES = 5
CANCELLED_SUMMARY = "Cancelled by user"


class SyncCancelled(Exception):
    pass


# run id -> cancel event for runs started in this process
_cancel_events: dict[int, asyncio.Event] = {}


def register_run(run_id: int) -> asyncio.Event:
    event = asyncio.Event()
    _cancel_events[run_id] = event
    return event


def unregister_run(run_id: int) -> None:
    _cancel_events.pop(run_id, None)


def request_cancel(run_id: int) -> bool:
    """
    Signal a run started in this process. False when the run is not local.
    """
    event = _cancel_events.get(run_id)
    if event is None:
        return False
    event.set()
    return True


def active_run_ids() -> list[int]:
    return sorted(_cancel_events)


@dataclass
class SyncParams:
    node_ids: list[str] | None = None
    academic_year: str | None = None
    schedule_id: int | None = None
    endpoints_mb: list[str] | None = None
    endpoints_nex: list[str] | None = None
    include_descendants: bool = False
    all: bool = False
    triggered_by: str = "scheduler"
    existing_run_id: int | None = None
    cancel_event: asyncio.Event | None = None
    config_ids_mb: list[int] | None = None
    config_ids_nex: list[int] | None = None


@dataclass
class SchoolItem:
    source: str
    school_id: str
    school_name: str | None
    config: dict[str, Any]
    school_run_id: int = 0


@dataclass
class SchoolOutcome:
    item: SchoolItem
    success: bool
    error: str | None = None


@dataclass
class RunState:
    outcomes: list[SchoolOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    def error_summary(self) -> str | None:
        errors = [f"{o.item.school_name} ({o.item.source}): {o.error}" for o in self.outcomes if not o.success]
        return "; ".join(errors[:ERROR_SUMMARY_MAX_ENTRIES]) or None


def check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelled()


def academic_year_date_range(academic_year: str | None, today: date | None = None) -> tuple[date, date]:
    """
    "2024" or "2024-2025" -> Jan 1 to Dec 31 of 2024.
    """
    digits = (academic_year or "").strip()[:4]
    year = int(digits) if digits.isdigit() else (today or date.today()).year
    return date(year, 1, 1), date(year, 12, 31)


def select_endpoints(requested: list[str] | None, ordered: list[str]) -> list[str]:
    if not requested:
        return list(ordered)
    return [e for e in ordered if e in requested]


def school_items(configs: dict[str, list[dict]]) -> list[SchoolItem]:
    """
    Flatten scope configs into school items, skipping configs without a school id.
    """
    items = []
    for config in configs.get("mb", []):
        if config.get("school_id") is not None and str(config["school_id"]).strip():
            items.append(SchoolItem("mb", str(config["school_id"]), config.get("school_name"), config))
    for config in configs.get("nex", []):
        school_id = (config.get("school_id") or "").strip()
        if school_id:
            items.append(SchoolItem("nex", school_id, config.get("school_name"), config))
    return items


async def sync_managebac_school(
    config: dict[str, Any],
    *,
    academic_year: str | None,
    endpoints: list[str],
    cancel_event: asyncio.Event | None = None,
    school_run_id: int | None = None,
) -> None:
    async with ManageBacClient(config["api_token"], config.get("base_url")) as client:
        # Fresh instance per school so the current school id is never shared.
        mb = ManageBacSync(client)
        if config.get("school_id") is not None:
            mb.set_current_school_id(int(config["school_id"]))
        for endpoint in endpoints:
            check_cancelled(cancel_event)
            if school_run_id is not None:
                await repository.set_current_endpoint(school_run_id, endpoint)
            await mb.run_endpoint(endpoint, academic_year=academic_year)


async def sync_nexquare_school(
    config: dict[str, Any],
    school_id: str,
    *,
    academic_year: str | None,
    endpoints: list[str],
    cancel_event: asyncio.Event | None = None,
    school_run_id: int | None = None,
) -> None:
    start, end = academic_year_date_range(academic_year)
    year = academic_year or str(date.today().year)
    async with NexquareClient(config) as client:
        nex = NexquareSync(client, school_id=school_id)
        for endpoint in endpoints:
            check_cancelled(cancel_event)
            if school_run_id is not None:
                await repository.set_current_endpoint(school_run_id, endpoint)
            await nex.run_endpoint(endpoint, school_id=school_id, academic_year=year, start_date=start, end_date=end)


async def _run_school(item: SchoolItem, params: SyncParams, state: RunState) -> None:
    try:
        if item.source == "mb":
            await sync_managebac_school(
                item.config,
                academic_year=params.academic_year,
                endpoints=select_endpoints(params.endpoints_mb, MB_ENDPOINTS),
                cancel_event=params.cancel_event,
                school_run_id=item.school_run_id,
            )
        else:
            await sync_nexquare_school(
                item.config,
                item.school_id,
                academic_year=params.academic_year,
                endpoints=select_endpoints(params.endpoints_nex, NEX_ENDPOINTS),
                cancel_event=params.cancel_event,
                school_run_id=item.school_run_id,
            )
    except SyncCancelled:
        raise
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.error(
            "sync_school_failed source=%s school_id=%s config_id=%s error=%s",
            item.source,
            item.school_id,
            item.config.get("id"),
            message,
        )
        await repository.fail_run_school(item.school_run_id, message[:ERROR_MESSAGE_MAX_CHARS])
        state.outcomes.append(SchoolOutcome(item, False, message))
        return

    await repository.complete_run_school(item.school_run_id)
    state.outcomes.append(SchoolOutcome(item, True))
    logger.info("sync_school_completed source=%s school_id=%s", item.source, item.school_id)


async def _run_track(items: list[SchoolItem], params: SyncParams, state: RunState) -> None:
    for item in items:
        check_cancelled(params.cancel_event)
        await _run_school(item, params, state)


def _node_label(params: SyncParams) -> str | None:
    if params.all:
        return "all"
    if params.node_ids:
        return ",".join(params.node_ids)
    return None


async def run_sync(params: SyncParams) -> dict[str, Any]:
    """
    Run one sync for the scope in `params` and return the run summary.
    """
    academic_year = params.academic_year or str(date.today().year)
    params.academic_year = academic_year

    if params.existing_run_id is not None:
        run_id = params.existing_run_id
        await repository.mark_run_running(run_id)
    else:
        run_id = await repository.insert_run(
            schedule_id=params.schedule_id,
            node_id=_node_label(params),
            academic_year=academic_year,
            status="running",
            triggered_by=params.triggered_by,
        )
    logger.info("sync_run_started run_id=%s triggered_by=%s academic_year=%s", run_id, params.triggered_by, academic_year)

    configs = await scope.get_configs_for_scope(
        node_ids=params.node_ids,
        include_descendants=params.include_descendants,
        all=params.all,
        config_ids_mb=params.config_ids_mb,
        config_ids_nex=params.config_ids_nex,
    )
    items = school_items(configs)
    await repository.set_total_schools(run_id, len(items))

    for item in items:
        item.school_run_id = await repository.insert_run_school(
            run_id=run_id,
            school_id=item.school_id,
            school_source=item.source,
            config_id=item.config["id"],
            school_name=item.school_name,
        )
    await repository.mark_run_schools_running(run_id)

    state = RunState()
    results = await asyncio.gather(
        _run_track([i for i in items if i.source == "mb"], params, state),
        _run_track([i for i in items if i.source == "nex"], params, state),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, SyncCancelled):
            # Track crashed outside the per-school handler; close the run before propagating.
            await repository.fail_run(run_id, (str(result) or result.__class__.__name__)[:ERROR_MESSAGE_MAX_CHARS])
            await repository.skip_run_schools(run_id, "Run failed")
            raise result

    if any(isinstance(r, SyncCancelled) for r in results):
        await repository.finish_run(
            run_id,
            status="cancelled",
            succeeded=state.succeeded,
            failed=state.failed,
            error_summary=CANCELLED_SUMMARY,
        )
        await repository.skip_run_schools(run_id, "Cancelled")
        logger.info("sync_run_cancelled run_id=%s succeeded=%s failed=%s", run_id, state.succeeded, state.failed)
        return {
            "run_id": run_id,
            "status": "cancelled",
            "total_schools": len(items),
            "schools_succeeded": state.succeeded,
            "schools_failed": state.failed,
            "error_summary": CANCELLED_SUMMARY,
        }

    status = "failed" if state.failed > 0 and state.succeeded == 0 else "completed"
    summary = state.error_summary()
    await repository.finish_run(
        run_id,
        status=status,
        succeeded=state.succeeded,
        failed=state.failed,
        error_summary=summary,
    )
    logger.info(
        "sync_run_finished run_id=%s status=%s total=%s succeeded=%s failed=%s",
        run_id,
        status,
        len(items),
        state.succeeded,
        state.failed,
    )
    return {
        "run_id": run_id,
        "status": status,
        "total_schools": len(items),
        "schools_succeeded": state.succeeded,
        "schools_failed": state.failed,
        "error_summary": summary,
    }
