from __future__ import annotations

import asyncio
from datetime import date

import pytest

from core.http import UpstreamError
from managebac import client as mb_client
from managebac import repository as managebac_repository
from sync import orchestrator
from sync import repository as sync_repository
from sync import scope
from sync.orchestrator import SyncParams

MB_CONFIG = {"id": 1, "school_id": 101, "school_name": "MB One", "api_token": "t"}
MB_CONFIG_2 = {"id": 2, "school_id": 102, "school_name": "MB Two", "api_token": "t"}
NEX_CONFIG = {"id": 3, "school_id": "NX-1", "school_name": "Nex One", "domain_url": "nex.example"}


class RunRecorder:
    def __init__(self) -> None:
        self.finished: dict | None = None
        self.completed: list[int] = []
        self.failed: dict[int, str] = {}
        self.skipped: list[tuple[int, str]] = []
        self.school_rows: list[dict] = []
        self.total: int | None = None
        self.runs: list[dict] = []

    async def insert_run(self, **kwargs):
        self.runs.append(kwargs)
        return 55

    async def mark_run_running(self, run_id):
        self.runs.append({"existing": run_id})

    async def set_total_schools(self, run_id, total):
        self.total = total

    async def insert_run_school(self, **kwargs):
        self.school_rows.append(kwargs)
        return len(self.school_rows)

    async def mark_run_schools_running(self, run_id):
        return None

    async def set_current_endpoint(self, school_run_id, endpoint):
        return None

    async def complete_run_school(self, school_run_id):
        self.completed.append(school_run_id)

    async def fail_run_school(self, school_run_id, message):
        self.failed[school_run_id] = message

    async def finish_run(self, run_id, **kwargs):
        self.finished = {"run_id": run_id, **kwargs}

    async def skip_run_schools(self, run_id, message, statuses=("running",)):
        self.skipped.append((run_id, message))


@pytest.fixture
def recorder(monkeypatch):
    rec = RunRecorder()
    for name in (
        "insert_run",
        "mark_run_running",
        "set_total_schools",
        "insert_run_school",
        "mark_run_schools_running",
        "set_current_endpoint",
        "complete_run_school",
        "fail_run_school",
        "finish_run",
        "skip_run_schools",
    ):
        monkeypatch.setattr(sync_repository, name, getattr(rec, name))
    return rec


@pytest.fixture
def configs(monkeypatch):
    current = {"mb": [MB_CONFIG, MB_CONFIG_2], "nex": [NEX_CONFIG]}

    async def fake_scope(**kwargs):
        return current

    monkeypatch.setattr(scope, "get_configs_for_scope", fake_scope)
    return current


def test_academic_year_date_range():
    assert orchestrator.academic_year_date_range("2024-2025") == (date(2024, 1, 1), date(2024, 12, 31))
    assert orchestrator.academic_year_date_range(None, today=date(2026, 5, 1)) == (date(2026, 1, 1), date(2026, 12, 31))


def test_select_endpoints_keeps_canonical_order():
    assert orchestrator.select_endpoints(["students", "school"], orchestrator.MB_ENDPOINTS) == ["school", "students"]
    assert orchestrator.select_endpoints(None, orchestrator.MB_ENDPOINTS) == orchestrator.MB_ENDPOINTS
    assert orchestrator.select_endpoints(["bogus"], orchestrator.NEX_ENDPOINTS) == []


def test_school_items_skip_configs_without_school():
    items = orchestrator.school_items({"mb": [MB_CONFIG, {"id": 9, "school_id": None}], "nex": [{"id": 4, "school_id": " "}]})
    assert [(i.source, i.school_id) for i in items] == [("mb", "101")]


def test_cancel_registry():
    event = orchestrator.register_run(900)
    assert orchestrator.request_cancel(900)
    assert event.is_set()
    assert 900 in orchestrator.active_run_ids()
    orchestrator.unregister_run(900)
    assert not orchestrator.request_cancel(900)


async def test_failed_school_does_not_stop_others(monkeypatch, recorder, configs):
    synced = []

    async def fake_mb(config, **kwargs):
        if config["id"] == 1:
            raise UpstreamError("HTTP_401", "bad token", 401)
        synced.append(config["id"])

    async def fake_nex(config, school_id, **kwargs):
        synced.append(school_id)

    monkeypatch.setattr(orchestrator, "sync_managebac_school", fake_mb)
    monkeypatch.setattr(orchestrator, "sync_nexquare_school", fake_nex)

    result = await orchestrator.run_sync(SyncParams(all=True, academic_year="2024", triggered_by="manual"))

    assert result == {
        "run_id": 55,
        "status": "completed",
        "total_schools": 3,
        "schools_succeeded": 2,
        "schools_failed": 1,
        "error_summary": "MB One (mb): bad token",
    }
    assert sorted(map(str, synced)) == ["2", "NX-1"]
    assert recorder.total == 3
    assert recorder.failed == {1: "bad token"}
    assert recorder.runs[0]["node_id"] == "all"
    assert recorder.runs[0]["triggered_by"] == "manual"
    assert recorder.finished["status"] == "completed"


async def test_all_failed_marks_run_failed(monkeypatch, recorder, configs):
    async def boom(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(orchestrator, "sync_managebac_school", boom)
    monkeypatch.setattr(orchestrator, "sync_nexquare_school", boom)

    result = await orchestrator.run_sync(SyncParams(node_ids=["n1", "n2"], academic_year="2024"))

    assert result["status"] == "failed"
    assert result["schools_failed"] == 3
    assert recorder.runs[0]["node_id"] == "n1,n2"


async def test_error_messages_are_truncated(monkeypatch, recorder, configs):
    configs["mb"] = [MB_CONFIG]
    configs["nex"] = []

    async def long_failure(*args, **kwargs):
        raise ValueError("x" * 5000)

    monkeypatch.setattr(orchestrator, "sync_managebac_school", long_failure)

    await orchestrator.run_sync(SyncParams(all=True, academic_year="2024"))

    assert len(recorder.failed[1]) == orchestrator.ERROR_MESSAGE_MAX_CHARS


async def test_cancel_stops_run_and_skips_remaining(monkeypatch, recorder, configs):
    configs["nex"] = []
    cancel_event = asyncio.Event()

    async def fake_mb(config, *, cancel_event, **kwargs):
        orchestrator.check_cancelled(cancel_event)
        cancel_event.set()

    monkeypatch.setattr(orchestrator, "sync_managebac_school", fake_mb)

    result = await orchestrator.run_sync(
        SyncParams(all=True, academic_year="2024", cancel_event=cancel_event, existing_run_id=77)
    )

    assert result["status"] == "cancelled"
    assert result["run_id"] == 77
    assert result["schools_succeeded"] == 1
    assert recorder.runs == [{"existing": 77}]
    assert recorder.finished["error_summary"] == orchestrator.CANCELLED_SUMMARY
    assert recorder.skipped == [(77, "Cancelled")]


async def test_no_configs_completes_empty(monkeypatch, recorder, configs):
    configs["mb"] = []
    configs["nex"] = []

    result = await orchestrator.run_sync(SyncParams(node_ids=["n1"], academic_year="2024"))

    assert result["status"] == "completed"
    assert result["total_schools"] == 0
    assert result["error_summary"] is None


async def test_unexpected_error_is_isolated_per_school(monkeypatch, recorder, configs):
    configs["nex"] = []
    synced = []

    async def fake_mb(config, **kwargs):
        if config["id"] == 1:
            payload = None
            payload.get("school")
        synced.append(config["id"])

    monkeypatch.setattr(orchestrator, "sync_managebac_school", fake_mb)

    result = await orchestrator.run_sync(SyncParams(all=True, academic_year="2024"))

    assert synced == [2]
    assert recorder.completed == [2]
    assert "NoneType" in recorder.failed[1]
    assert recorder.finished["status"] == "completed"
    assert result["schools_failed"] == 1


async def test_null_school_payload_fails_only_that_school(monkeypatch, recorder, configs):
    configs["nex"] = []

    async def fake_request(self, endpoint, **kwargs):
        if self.api_token == "bad":
            return None
        return {"school": {"id": 102, "name": "MB Two"}}

    async def fake_upsert(**kwargs):
        return None

    monkeypatch.setattr(mb_client.ManageBacClient, "request", fake_request)
    monkeypatch.setattr(managebac_repository, "upsert_school", fake_upsert)
    configs["mb"] = [{**MB_CONFIG, "api_token": "bad"}, MB_CONFIG_2]

    result = await orchestrator.run_sync(SyncParams(all=True, academic_year="2024", endpoints_mb=["school"]))

    assert recorder.failed[1] == "Invalid response format: missing school object"
    assert recorder.completed == [2]
    assert result["status"] == "completed"


async def test_track_crash_closes_run(monkeypatch, recorder, configs):
    configs["nex"] = []
    failed_runs = []

    async def fake_mb(config, **kwargs):
        return None

    async def broken_complete(school_run_id):
        raise ConnectionResetError("pool gone")

    async def fake_fail_run(run_id, summary):
        failed_runs.append((run_id, summary))

    monkeypatch.setattr(orchestrator, "sync_managebac_school", fake_mb)
    monkeypatch.setattr(sync_repository, "complete_run_school", broken_complete)
    monkeypatch.setattr(sync_repository, "fail_run", fake_fail_run)

    with pytest.raises(ConnectionResetError):
        await orchestrator.run_sync(SyncParams(all=True, academic_year="2024"))

    assert failed_runs == [(55, "pool gone")]
    assert recorder.skipped == [(55, "Run failed")]
