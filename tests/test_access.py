from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from access import repository, schemas, service
from auth import repository as auth_repository


def test_group_school_access_merges_departments():
    rows = [
        {"node_id": "N1", "school_source": "nex", "school_id": "S1", "department_id": "ACAD"},
        {"node_id": "N1", "school_source": "nex", "school_id": "S1", "department_id": "HR"},
        {"node_id": "N1", "school_source": "nex", "school_id": "S1", "department_id": "HR"},
        {"node_id": "N2", "school_source": "mb", "school_id": "7", "department_id": "ACAD"},
    ]
    grouped = service.group_school_access(rows)
    assert grouped == [
        {"node_id": "N1", "school_source": "nex", "school_id": "S1", "departments": ["ACAD", "HR"]},
        {"node_id": "N2", "school_source": "mb", "school_id": "7", "departments": ["ACAD"]},
    ]


@pytest.fixture
def grant_mocks(monkeypatch):
    mocks = {
        "node_exists": AsyncMock(return_value=True),
        "count_departments": AsyncMock(return_value=2),
        "insert_user_access": AsyncMock(),
        "list_user_access": AsyncMock(return_value=[]),
        "delete_node_access": AsyncMock(return_value=1),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(repository, name, mock)
    monkeypatch.setattr(auth_repository, "get_user_by_email", AsyncMock(return_value={"user_id": "u@school.test"}))
    return mocks


async def test_grant_access_dedupes_departments(grant_mocks):
    await service.grant_access(
        "u@school.test",
        schemas.GrantAccessRequest(node_id="N1", department_ids=["ACAD", "HR", "ACAD"]),
        created_by="admin@school.test",
    )
    kwargs = grant_mocks["insert_user_access"].await_args.kwargs
    assert kwargs["department_ids"] == ["ACAD", "HR"]
    assert kwargs["user_id"] == "u@school.test"


async def test_grant_access_unknown_department_is_400(grant_mocks):
    grant_mocks["count_departments"].return_value = 1
    with pytest.raises(HTTPException) as exc:
        await service.grant_access(
            "u@school.test",
            schemas.GrantAccessRequest(node_id="N1", department_ids=["ACAD", "NOPE"]),
            created_by=None,
        )
    assert exc.value.status_code == 400
    grant_mocks["insert_user_access"].assert_not_awaited()


async def test_grant_access_unknown_node_is_404(grant_mocks):
    grant_mocks["node_exists"].return_value = False
    with pytest.raises(HTTPException) as exc:
        await service.grant_access(
            "u@school.test",
            schemas.GrantAccessRequest(node_id="N9", department_ids=["ACAD"]),
            created_by=None,
        )
    assert exc.value.status_code == 404


async def test_update_access_deletes_then_regrants(grant_mocks):
    await service.update_access(
        "u@school.test",
        "N1",
        schemas.UpdateAccessRequest(department_ids=["ACAD", "HR"]),
        created_by=None,
    )
    grant_mocks["delete_node_access"].assert_awaited_once_with(user_id="u@school.test", node_id="N1")
    grant_mocks["insert_user_access"].assert_awaited_once()


async def test_set_user_groups_requires_user(monkeypatch):
    monkeypatch.setattr(auth_repository, "get_user_by_email", AsyncMock(return_value=None))
    with pytest.raises(HTTPException) as exc:
        await service.set_user_groups("ghost@school.test", schemas.SetUserGroupsRequest(group_ids=["G1"]), created_by=None)
    assert exc.value.status_code == 404


def test_available_pages_route_is_not_a_group_id(admin_client, monkeypatch):
    get_group = AsyncMock(return_value=None)
    monkeypatch.setattr(repository, "get_group", get_group)
    resp = admin_client.get("/api/access-groups/available-pages")
    assert resp.status_code == 200
    ids = [item["id"] for item in resp.json()["items"]]
    assert "admin:users" in ids
    get_group.assert_not_awaited()


def test_set_group_pages_replaces_set(admin_client, monkeypatch):
    monkeypatch.setattr(repository, "get_group", AsyncMock(return_value={"group_id": "G1"}))
    replace = AsyncMock()
    monkeypatch.setattr(repository, "replace_group_pages", replace)
    monkeypatch.setattr(repository, "list_group_pages", AsyncMock(return_value=["admin:nodes", "dashboard"]))

    resp = admin_client.put("/api/access-groups/G1/pages", json={"item_ids": ["dashboard", " admin:nodes ", "dashboard"]})
    assert resp.status_code == 200
    assert replace.await_args.args == ("G1", ["dashboard", "admin:nodes"])
