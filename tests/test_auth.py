from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from auth import repository, schemas, security, service


def _user(**overrides) -> dict:
    row = {
        "user_id": "teacher@school.test",
        "email": "teacher@school.test",
        "display_name": "Teacher",
        "auth_type": "Password",
        "password_hash": security.hash_password("Secret#123"),
        "is_active": True,
        "is_temporary_password": False,
        "last_login": None,
        "created_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def repo(monkeypatch):
    mocks = {
        "get_user_by_email": AsyncMock(return_value=_user()),
        "mark_login": AsyncMock(),
        "set_password": AsyncMock(),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(repository, name, mock)
    return mocks


async def test_login_returns_token_and_marks_login(repo):
    result = await service.login(schemas.LoginRequest(email="teacher@school.test", password="Secret#123"))
    assert security.decode_access_token(result.token)["email"] == "teacher@school.test"
    assert result.user.email == "teacher@school.test"
    repo["mark_login"].assert_awaited_once_with("teacher@school.test")


async def test_login_unknown_user_is_401(repo):
    repo["get_user_by_email"].return_value = None
    with pytest.raises(HTTPException) as exc:
        await service.login(schemas.LoginRequest(email="x@school.test", password="Secret#123"))
    assert exc.value.status_code == 401
    assert exc.value.detail == "Invalid email or password"


async def test_login_wrong_password_is_401(repo):
    with pytest.raises(HTTPException) as exc:
        await service.login(schemas.LoginRequest(email="teacher@school.test", password="nope"))
    assert exc.value.status_code == 401
    repo["mark_login"].assert_not_awaited()


async def test_login_inactive_user_is_401(repo):
    repo["get_user_by_email"].return_value = _user(is_active=False)
    with pytest.raises(HTTPException) as exc:
        await service.login(schemas.LoginRequest(email="teacher@school.test", password="Secret#123"))
    assert exc.value.detail == "User account is inactive"


async def test_login_microsoft_account_is_400(repo):
    repo["get_user_by_email"].return_value = _user(auth_type="AppRegistration")
    with pytest.raises(HTTPException) as exc:
        await service.login(schemas.LoginRequest(email="teacher@school.test", password="Secret#123"))
    assert exc.value.status_code == 400


async def test_login_with_temporary_password_requires_change(repo):
    repo["get_user_by_email"].return_value = _user(is_temporary_password=True)
    with pytest.raises(HTTPException) as exc:
        await service.login(schemas.LoginRequest(email="teacher@school.test", password="Secret#123"))
    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == "PASSWORD_CHANGE_REQUIRED"
    payload = security.decode_access_token(exc.value.detail["token"])
    assert payload["exp"] - payload["iat"] == service.PASSWORD_CHANGE_TOKEN_TTL_S
    repo["mark_login"].assert_not_awaited()


async def test_change_password_requires_current_password(repo):
    with pytest.raises(HTTPException) as exc:
        await service.change_password(
            "teacher@school.test",
            schemas.ChangePasswordRequest(new_password="NewSecret#1"),
        )
    assert exc.value.detail == "Current password is required"


async def test_change_password_rejects_weak_password(repo):
    with pytest.raises(HTTPException) as exc:
        await service.change_password(
            "teacher@school.test",
            schemas.ChangePasswordRequest(current_password="Secret#123", new_password="weak"),
        )
    assert exc.value.status_code == 400
    repo["set_password"].assert_not_awaited()


async def test_change_temporary_password_skips_current_check(repo):
    repo["get_user_by_email"].return_value = _user(is_temporary_password=True)
    result = await service.change_password(
        "teacher@school.test",
        schemas.ChangePasswordRequest(new_password="NewSecret#1"),
    )
    assert result["success"] is True
    kwargs = repo["set_password"].await_args.kwargs
    assert kwargs["is_temporary"] is False
    assert security.verify_password("NewSecret#1", kwargs["password_hash"])


async def test_token_user_resolution_blocks_temporary_password(repo):
    repo["get_user_by_email"].return_value = _user(is_temporary_password=True)
    token = security.build_access_token(email="teacher@school.test", auth_type="Password")
    with pytest.raises(HTTPException) as exc:
        await service.get_user_from_access_token(token)
    assert exc.value.status_code == 403
    user = await service.get_user_from_access_token(token, allow_temporary=True)
    assert user["email"] == "teacher@school.test"


async def test_invalid_token_is_401(repo):
    with pytest.raises(HTTPException) as exc:
        await service.get_user_from_access_token("garbage")
    assert exc.value.status_code == 401


def test_me_requires_bearer_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "No token provided"}


def test_me_with_valid_token(client, repo):
    token = security.build_access_token(email="teacher@school.test", auth_type="Password")
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["email"] == "teacher@school.test"


def test_login_route(client, repo):
    resp = client.post("/api/auth/login", json={"email": "teacher@school.test", "password": "Secret#123"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "teacher@school.test"


def test_admin_allow_list(client, repo, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "boss@school.test")
    token = security.build_access_token(email="teacher@school.test", auth_type="Password")
    resp = client.get("/api/users", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Admin access required"
