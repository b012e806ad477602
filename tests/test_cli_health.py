from __future__ import annotations

import importlib
from unittest.mock import AsyncMock

from core import db
from scheduler import service as scheduler_service

cli = importlib.import_module("sync.__main__")


def test_build_params_from_flags():
    args = cli._parse_args(["--node", "n1", "--node", "n2", "--year", "2025", "--mb", "3", "--descendants"])
    params = cli.build_params(args)
    assert params.node_ids == ["n1", "n2"]
    assert params.academic_year == "2025"
    assert params.config_ids_mb == [3]
    assert params.config_ids_nex is None
    assert params.include_descendants is True
    assert params.triggered_by == "cli"


def test_main_without_scope_exits_2(capsys):
    assert cli.main([]) == 2
    assert "Nothing to sync" in capsys.readouterr().err


def test_main_exit_code_follows_status(monkeypatch, capsys):
    seen = []

    async def fake_main(params):
        seen.append(params)
        return {"run_id": 1, "status": "failed"}

    monkeypatch.setattr(cli, "_main", fake_main)

    assert cli.main(["--all"]) == 1
    assert seen[0].all is True
    assert '"status": "failed"' in capsys.readouterr().out


def test_health_reports_database_state(client, monkeypatch):
    monkeypatch.setattr(db, "ping", AsyncMock(return_value=False))
    monkeypatch.setenv("CRON_TIMEZONE", "UTC")

    body = client.get("/api/health").json()

    assert body["status"] == "ok"
    assert body["database"] == "disconnected"
    assert body["sync_scheduler"] == {"enabled": scheduler_service.is_enabled(), "timezone": "UTC"}
    assert body["timestamp"]


def test_root(client):
    assert client.get("/").json() == {"message": "school-analytics-hub api"}
