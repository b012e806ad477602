from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from scheduler import service as scheduler_service
from sync import orchestrator
from sync import repository as sync_repository
from sync import service as sync_service

SCHEDULE_ROW = {
    "id": 3,
    "node_id": "n1",
    "academic_year": "2024",
    "cron_expression": "0 2 * * *",
    "endpoints_mb": '["students"]',
    "endpoints_nex": None,
    "include_descendants": False,
    "is_active": True,
    "created_by": "admin@school.test",
}


@pytest.fixture
def no_reload(monkeypatch):
    reload = AsyncMock()
    monkeypatch.setattr(scheduler_service, "reload", reload)
    return reload


def test_sync_routes_require_auth(client):
    assert client.get("/api/sync/runs").status_code == 401


def test_info_lists_endpoints(admin_client):
    body = admin_client.get("/api/sync/info").json()
    assert body["endpoints_mb"][0] == "school"
    assert "daily-attendance" in body["endpoints_nex"]
    assert body["scheduler"]["timezone"]


def test_trigger_requires_scope(admin_client, monkeypatch):
    insert_run = AsyncMock(return_value=1)
    monkeypatch.setattr(sync_repository, "insert_run", insert_run)

    resp = admin_client.post("/api/sync/trigger", json={"academicYear": "2024"})

    assert resp.status_code == 400
    insert_run.assert_not_awaited()


def test_trigger_starts_background_run(admin_client, monkeypatch):
    insert_run = AsyncMock(return_value=42)
    monkeypatch.setattr(sync_repository, "insert_run", insert_run)
    monkeypatch.setattr(orchestrator, "run_sync", AsyncMock(return_value={"run_id": 42, "status": "completed"}))

    resp = admin_client.post("/api/sync/trigger", json={"nodeIds": ["n1", "n2"], "academicYear": "2024"})

    assert resp.status_code == 202
    assert resp.json() == {"success": True, "runId": 42, "status": "started"}
    kwargs = insert_run.await_args.kwargs
    assert kwargs["node_id"] == "n1,n2"
    assert kwargs["status"] == "pending"
    assert kwargs["triggered_by"] == "manual"
    orchestrator.unregister_run(42)


def test_cancel_unknown_run_is_404(admin_client, monkeypatch):
    monkeypatch.setattr(sync_repository, "get_run", AsyncMock(return_value=None))
    assert admin_client.post("/api/sync/runs/5/cancel").status_code == 404


def test_cancel_finished_run_is_400(admin_client, monkeypatch):
    monkeypatch.setattr(sync_repository, "get_run", AsyncMock(return_value={"id": 5, "status": "completed"}))
    resp = admin_client.post("/api/sync/runs/5/cancel")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Run cannot be cancelled (status: completed)"


def test_cancel_local_run_signals_event(admin_client, monkeypatch):
    monkeypatch.setattr(sync_repository, "get_run", AsyncMock(return_value={"id": 6, "status": "running"}))
    event = orchestrator.register_run(6)
    try:
        resp = admin_client.post("/api/sync/runs/6/cancel")
    finally:
        orchestrator.unregister_run(6)

    assert resp.json()["status"] == "cancelling"
    assert event.is_set()


def test_cancel_foreign_run_marks_cancelled(admin_client, monkeypatch):
    monkeypatch.setattr(sync_repository, "get_run", AsyncMock(return_value={"id": 7, "status": "pending"}))
    cancel_run = AsyncMock()
    skip = AsyncMock()
    monkeypatch.setattr(sync_repository, "cancel_run", cancel_run)
    monkeypatch.setattr(sync_repository, "skip_run_schools", skip)

    resp = admin_client.post("/api/sync/runs/7/cancel")

    assert resp.json() == {"success": True, "runId": 7, "status": "cancelled"}
    cancel_run.assert_awaited_once()
    assert skip.await_args.kwargs["statuses"] == ("pending", "running")


def test_list_runs_validates_limit(admin_client, monkeypatch):
    list_runs = AsyncMock(return_value=[{"id": 1}])
    monkeypatch.setattr(sync_repository, "list_runs", list_runs)

    assert admin_client.get("/api/sync/runs", params={"limit": 500}).status_code == 422
    resp = admin_client.get("/api/sync/runs", params={"status": "failed", "limit": 10})
    assert resp.json() == {"runs": [{"id": 1}], "count": 1}
    assert list_runs.await_args.kwargs == {"node_id": None, "academic_year": None, "status": "failed", "limit": 10}


def test_get_run_includes_schools(admin_client, monkeypatch):
    monkeypatch.setattr(sync_repository, "get_run", AsyncMock(return_value={"id": 8, "status": "completed"}))
    monkeypatch.setattr(sync_repository, "list_run_schools", AsyncMock(return_value=[{"id": 1}]))
    assert admin_client.get("/api/sync/runs/8").json()["schools"] == [{"id": 1}]


def test_create_schedule_rejects_bad_cron(admin_client, monkeypatch, no_reload):
    insert = AsyncMock()
    monkeypatch.setattr(sync_repository, "insert_schedule", insert)

    resp = admin_client.post(
        "/api/sync/schedules",
        json={"node_id": "n1", "academic_year": "2024", "cron_expression": "sometimes"},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid cron expression"
    insert.assert_not_awaited()


def test_create_schedule_stores_endpoints_as_json(admin_client, monkeypatch, no_reload):
    insert = AsyncMock(return_value=SCHEDULE_ROW)
    monkeypatch.setattr(sync_repository, "insert_schedule", insert)

    resp = admin_client.post(
        "/api/sync/schedules",
        json={"node_id": "n1", "academic_year": "2024", "cron_expression": "0 2 * * *", "endpoints_mb": ["students"]},
    )

    assert resp.status_code == 201
    assert resp.json()["endpoints_mb"] == ["students"]
    assert insert.await_args.kwargs["endpoints_mb"] == '["students"]'
    assert insert.await_args.kwargs["created_by"] == "admin@school.test"
    no_reload.assert_awaited_once()


def test_update_schedule_without_fields_is_400(admin_client, no_reload):
    resp = admin_client.put("/api/sync/schedules/3", json={})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No fields to update"


def test_update_missing_schedule_is_404(admin_client, monkeypatch, no_reload):
    monkeypatch.setattr(sync_repository, "update_schedule", AsyncMock(return_value=None))
    assert admin_client.put("/api/sync/schedules/3", json={"is_active": False}).status_code == 404
    no_reload.assert_not_awaited()


def test_delete_schedule(admin_client, monkeypatch, no_reload):
    monkeypatch.setattr(sync_repository, "delete_schedule", AsyncMock(return_value=True))
    assert admin_client.delete("/api/sync/schedules/3").json() == {"success": True}
    monkeypatch.setattr(sync_repository, "delete_schedule", AsyncMock(return_value=False))
    assert admin_client.delete("/api/sync/schedules/3").status_code == 404


async def test_background_run_survives_failed_status_update(monkeypatch):
    async def crash(params):
        raise RuntimeError("sync crashed")

    monkeypatch.setattr(orchestrator, "run_sync", crash)
    monkeypatch.setattr(sync_repository, "fail_run", AsyncMock(side_effect=ConnectionError("db gone")))
    orchestrator.register_run(91)

    await sync_service._run_in_background(orchestrator.SyncParams(all=True, existing_run_id=91))

    sync_repository.fail_run.assert_awaited_once_with(91, "sync crashed")
    assert 91 not in orchestrator.active_run_ids()
