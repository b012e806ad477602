from __future__ import annotations

from types import SimpleNamespace

from scheduler import service as scheduler_service
from sync import orchestrator
from sync import repository as sync_repository


class FakeScheduler:
    running = True

    def __init__(self, existing: list[str]) -> None:
        self.jobs = {jid: None for jid in existing}
        self.added: list[dict] = []

    def add_job(self, func, trigger, **kwargs):
        self.added.append({"func": func, "trigger": trigger, **kwargs})
        self.jobs[kwargs["id"]] = kwargs

    def get_jobs(self):
        return [SimpleNamespace(id=jid) for jid in list(self.jobs)]

    def remove_job(self, jid):
        del self.jobs[jid]


def schedule(schedule_id: int, cron: str = "0 2 * * *", **extra) -> dict:
    return {
        "id": schedule_id,
        "node_id": "n1",
        "academic_year": "2024",
        "cron_expression": cron,
        "endpoints_mb": None,
        "endpoints_nex": None,
        "include_descendants": False,
        **extra,
    }


def test_parse_endpoints():
    assert scheduler_service.parse_endpoints(None) is None
    assert scheduler_service.parse_endpoints("") is None
    assert scheduler_service.parse_endpoints('["students", "classes"]') == ["students", "classes"]
    assert scheduler_service.parse_endpoints("[]") is None
    assert scheduler_service.parse_endpoints("not json") is None
    assert scheduler_service.parse_endpoints('{"a": 1}') is None
    assert scheduler_service.parse_endpoints(["school"]) == ["school"]


def test_validate_cron():
    assert scheduler_service.validate_cron("*/15 * * * *")
    assert scheduler_service.validate_cron(" 0 2 * * 1-5 ")
    assert not scheduler_service.validate_cron("every day")
    assert not scheduler_service.validate_cron("61 * * * *")


def test_timezone_and_flag(monkeypatch):
    monkeypatch.delenv("CRON_TIMEZONE", raising=False)
    assert scheduler_service.timezone() == "Asia/Kolkata"
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    assert not scheduler_service.is_enabled()


async def test_load_schedules_adds_and_removes_jobs(monkeypatch):
    fake = FakeScheduler(["sync-schedule-reload", "sync-schedule-9", "other-job"])
    monkeypatch.setattr(scheduler_service, "_scheduler", fake)

    async def active():
        return [schedule(1), schedule(2, cron="bad cron")]

    monkeypatch.setattr(sync_repository, "list_active_schedules", active)

    count = await scheduler_service.load_schedules()

    assert count == 1
    assert [a["id"] for a in fake.added] == ["sync-schedule-1"]
    assert fake.added[0]["replace_existing"] is True
    assert fake.added[0]["max_instances"] == 1
    assert set(fake.jobs) == {"sync-schedule-reload", "sync-schedule-1", "other-job"}


async def test_load_schedules_without_scheduler(monkeypatch):
    monkeypatch.setattr(scheduler_service, "_scheduler", None)
    assert await scheduler_service.load_schedules() == 0


async def test_run_scheduled_sync_builds_params(monkeypatch):
    seen = []

    async def fake_run(params):
        seen.append(params)
        return {"run_id": 1, "status": "completed"}

    monkeypatch.setattr(orchestrator, "run_sync", fake_run)

    await scheduler_service.run_scheduled_sync(schedule(4, endpoints_mb='["students"]', include_descendants=True))

    params = seen[0]
    assert params.node_ids == ["n1"]
    assert params.schedule_id == 4
    assert params.endpoints_mb == ["students"]
    assert params.endpoints_nex is None
    assert params.include_descendants is True
    assert params.triggered_by == "scheduler"


async def test_run_scheduled_sync_swallows_errors(monkeypatch):
    async def failing(params):
        raise RuntimeError("boom")

    monkeypatch.setattr(orchestrator, "run_sync", failing)

    await scheduler_service.run_scheduled_sync(schedule(5))


async def test_start_skipped_when_disabled(monkeypatch):
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    assert await scheduler_service.start() is False
    assert not scheduler_service.is_running()

