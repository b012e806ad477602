from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from auth import repository as auth_repository
from auth import security
from users import schemas, service


def _row(email: str = "new@school.test", **overrides) -> dict:
    row = {
        "user_id": email,
        "email": email,
        "display_name": None,
        "auth_type": "Password",
        "is_active": True,
        "is_temporary_password": False,
        "last_login": None,
        "created_at": None,
    }
    row.update(overrides)
    return row


async def test_create_user_without_password_gets_temporary_one(monkeypatch):
    monkeypatch.setattr(auth_repository, "get_user_by_email", AsyncMock(return_value=None))
    create = AsyncMock(return_value=_row(is_temporary_password=True))
    monkeypatch.setattr(auth_repository, "create_user", create)

    result = await service.create_user(schemas.CreateUserRequest(email=" New@School.test "), created_by="admin@school.test")

    temporary = result["temporary_password"]
    assert security.validate_password(temporary) == []
    kwargs = create.await_args.kwargs
    assert kwargs["email"] == "new@school.test"
    assert kwargs["is_temporary_password"] is True
    assert security.verify_password(temporary, kwargs["password_hash"])


async def test_create_user_rejects_duplicates(monkeypatch):
    monkeypatch.setattr(auth_repository, "get_user_by_email", AsyncMock(return_value=_row()))
    with pytest.raises(HTTPException) as exc:
        await service.create_user(schemas.CreateUserRequest(email="new@school.test"), created_by=None)
    assert exc.value.status_code == 409


async def test_create_user_rejects_bad_email(monkeypatch):
    with pytest.raises(HTTPException) as exc:
        await service.create_user(schemas.CreateUserRequest(email="not-email"), created_by=None)
    assert exc.value.status_code == 400


async def test_create_microsoft_user_stores_no_password(monkeypatch):
    monkeypatch.setattr(auth_repository, "get_user_by_email", AsyncMock(return_value=None))
    create = AsyncMock(return_value=_row(auth_type="AppRegistration"))
    monkeypatch.setattr(auth_repository, "create_user", create)

    result = await service.create_user(
        schemas.CreateUserRequest(email="ms@school.test", auth_type="AppRegistration"),
        created_by=None,
    )
    assert "temporary_password" not in result
    assert create.await_args.kwargs["password_hash"] is None


async def test_cannot_deactivate_self():
    with pytest.raises(HTTPException) as exc:
        await service.deactivate_user("Admin@School.test", acting_email="admin@school.test")
    assert exc.value.status_code == 400


async def test_reset_password_sets_temporary(monkeypatch):
    monkeypatch.setattr(auth_repository, "get_user_by_email", AsyncMock(return_value=_row()))
    set_password = AsyncMock()
    monkeypatch.setattr(auth_repository, "set_password", set_password)

    result = await service.reset_password("new@school.test")
    assert set_password.await_args.kwargs["is_temporary"] is True
    assert security.verify_password(result["temporary_password"], set_password.await_args.kwargs["password_hash"])


def test_list_users_route(admin_client, monkeypatch):
    monkeypatch.setattr(auth_repository, "list_users", AsyncMock(return_value=[_row(), _row("b@school.test")]))
    resp = admin_client.get("/api/users")
    assert resp.status_code == 200
    assert resp.json()["count"] == 2


def test_my_access_is_not_shadowed_by_email_routes(user_client, monkeypatch):
    from access import repository as access_repository

    rows = [
        {"node_id": "N1", "school_id": "10", "school_source": "mb", "department_id": "ACAD"},
        {"node_id": "N1", "school_id": "10", "school_source": "mb", "department_id": "FIN"},
    ]
    monkeypatch.setattr(access_repository, "list_user_school_rows", AsyncMock(return_value=rows))
    resp = user_client.get("/api/users/me/access")
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["access"][0]["departments"] == ["ACAD", "FIN"]
