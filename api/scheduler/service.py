"""
Cron scheduler for stored sync schedules (APScheduler).

Active rows of `admin.sync_schedules` become jobs named `sync-schedule-{id}`.
A reload job re-reads the table every SCHEDULE_RELOAD_MINUTES so edits made
by other processes are picked up.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core import db
from core.config import env_flag_disabled, env_int, env_str
from sync import orchestrator
from sync import repository as sync_repository

logger = logging.getLogger(__name__)

JOB_PREFIX = "sync-schedule-"
RELOAD_JOB_ID = "sync-schedule-reload"

_scheduler: AsyncIOScheduler | None = None


def is_enabled() -> bool:
    return not env_flag_disabled("ENABLE_SCHEDULER")


def timezone() -> str:
    return env_str("CRON_TIMEZONE", "Asia/Kolkata")


def reload_minutes() -> int:
    return max(1, env_int("SCHEDULE_RELOAD_MINUTES", 5))


def is_running() -> bool:
    return _scheduler is not None and _scheduler.running


def parse_endpoints(raw: Any) -> list[str] | None:
    """
    Stored endpoint lists are JSON text; anything unusable means "all endpoints".
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, list):
        return [str(e) for e in raw] or None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(value, list) or not value:
        return None
    return [str(e) for e in value]


def build_trigger(cron_expression: str) -> CronTrigger:
    return CronTrigger.from_crontab(cron_expression.strip(), timezone=timezone())


def validate_cron(cron_expression: str) -> bool:
    try:
        build_trigger(cron_expression)
    except ValueError:
        return False
    return True


def job_id(schedule_id: int) -> str:
    return f"{JOB_PREFIX}{schedule_id}"


async def run_scheduled_sync(schedule: dict[str, Any]) -> None:
    """
    Job body for one schedule. Never raises into the scheduler.
    """
    schedule_id = schedule["id"]
    logger.info("scheduled_sync_started schedule_id=%s node_id=%s", schedule_id, schedule["node_id"])
    params = orchestrator.SyncParams(
        node_ids=[schedule["node_id"]],
        academic_year=schedule.get("academic_year"),
        schedule_id=schedule_id,
        endpoints_mb=parse_endpoints(schedule.get("endpoints_mb")),
        endpoints_nex=parse_endpoints(schedule.get("endpoints_nex")),
        include_descendants=bool(schedule.get("include_descendants")),
        triggered_by="scheduler",
    )
    try:
        result = await orchestrator.run_sync(params)
    except Exception:
        logger.exception("scheduled_sync_failed schedule_id=%s", schedule_id)
        return
    logger.info(
        "scheduled_sync_finished schedule_id=%s run_id=%s status=%s",
        schedule_id,
        result["run_id"],
        result["status"],
    )


async def load_schedules() -> int:
    """
    Sync scheduler jobs with the active schedule rows. Returns the job count.
    """
    if _scheduler is None:
        return 0

    schedules = await sync_repository.list_active_schedules()
    wanted: set[str] = set()
    for schedule in schedules:
        try:
            trigger = build_trigger(schedule["cron_expression"])
        except ValueError:
            logger.warning(
                "schedule_invalid_cron schedule_id=%s cron=%s",
                schedule["id"],
                schedule["cron_expression"],
            )
            continue
        jid = job_id(schedule["id"])
        _scheduler.add_job(
            run_scheduled_sync,
            trigger,
            id=jid,
            args=[schedule],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        wanted.add(jid)

    for job in _scheduler.get_jobs():
        if job.id.startswith(JOB_PREFIX) and job.id != RELOAD_JOB_ID and job.id not in wanted:
            _scheduler.remove_job(job.id)
            logger.info("schedule_job_removed job_id=%s", job.id)

    logger.info("schedules_loaded count=%s", len(wanted))
    return len(wanted)


async def _reload_job() -> None:
    try:
        await load_schedules()
    except (asyncpg.PostgresError, OSError, RuntimeError):
        logger.exception("schedule_reload_failed")


async def reload() -> None:
    """
    Re-read schedules after an API change. No-op when the scheduler is off.
    """
    if not is_running():
        return
    await _reload_job()


async def start() -> bool:
    global _scheduler

    if not is_enabled():
        logger.info("scheduler_disabled")
        return False
    if is_running():
        return True
    if not await db.ping():
        logger.warning("scheduler_not_started reason=database_unavailable")
        return False

    _scheduler = AsyncIOScheduler(timezone=timezone())
    _scheduler.add_job(
        _reload_job,
        IntervalTrigger(minutes=reload_minutes()),
        id=RELOAD_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    await _reload_job()
    logger.info("scheduler_started timezone=%s reload_minutes=%s", timezone(), reload_minutes())
    return True


def shutdown() -> None:
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
    _scheduler = None


def status() -> dict[str, Any]:
    return {"enabled": is_enabled(), "running": is_running(), "timezone": timezone()}
