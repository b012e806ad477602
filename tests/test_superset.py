from __future__ import annotations

import json

import httpx
import pytest

from core.http import UpstreamError
from superset import access
from superset import service as superset_service
from superset.service import SupersetService


def superset_transport(calls: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        path = request.url.path
        if path == "/api/v1/security/csrf_token/":
            return httpx.Response(200, json={"result": "csrf-1"})
        if path == "/api/v1/security/login":
            return httpx.Response(200, json={"access_token": "access-1"})
        if path == "/api/v1/security/guest_token/":
            return httpx.Response(200, json={"token": "guest-1"})
        if path == "/api/v1/dashboard/":
            return httpx.Response(200, json={"result": [{"id": 1}]})
        if path == "/api/v1/dashboard/404":
            return httpx.Response(404, json={"message": "Not found"})
        return httpx.Response(500)

    return httpx.MockTransport(handler)


@pytest.fixture
def use_service(monkeypatch):
    def install(svc: SupersetService) -> SupersetService:
        monkeypatch.setattr(superset_service, "_service", svc)
        return svc

    return install


async def test_configured_guest_token_short_circuits():
    svc = SupersetService(url="http://superset", guest_token="pre-made", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    assert await svc.generate_guest_token("7") == {"token": "pre-made", "expires_in": 3600}


async def test_login_flow_and_token_cache():
    calls: list[httpx.Request] = []
    svc = SupersetService(
        url="http://superset/",
        username="admin",
        password="pw",
        api_key="",
        guest_token="",
        transport=superset_transport(calls),
    )

    first = await svc.generate_guest_token("12")
    second = await svc.generate_guest_token("12")

    assert first == {"token": "guest-1", "expires_in": 3600}
    assert second == first
    paths = [c.url.path for c in calls]
    assert paths.count("/api/v1/security/login") == 1
    login = next(c for c in calls if c.url.path == "/api/v1/security/login")
    assert login.headers["X-CSRFToken"] == "csrf-1"
    assert json.loads(login.content) == {"username": "admin", "password": "pw", "provider": "db", "refresh": True}
    guest = next(c for c in calls if c.url.path == "/api/v1/security/guest_token/")
    assert guest.headers["Authorization"] == "Bearer access-1"
    assert json.loads(guest.content)["resources"] == [{"type": "dashboard", "id": "12"}]


async def test_api_key_skips_login():
    calls: list[httpx.Request] = []
    svc = SupersetService(url="http://superset", api_key="key-1", guest_token="", transport=superset_transport(calls))

    assert await svc.list_dashboards() == [{"id": 1}]
    assert [c.url.path for c in calls] == ["/api/v1/dashboard/"]
    assert calls[0].headers["Authorization"] == "Bearer key-1"


async def test_upstream_status_is_kept():
    svc = SupersetService(url="http://superset", api_key="key-1", guest_token="", transport=superset_transport([]))
    with pytest.raises(UpstreamError) as exc:
        await svc.get_dashboard(404)
    assert exc.value.status_code == 404


def test_access_decision():
    assert access.decide({"reason": "user_not_found"}) == {"allowed": False, "reason": "user_not_found"}
    assert access.decide({"is_admin": 1, "dashboard_role_count": 3, "matching_roles": 0})["allowed"]
    assert access.decide({"is_admin": 0, "dashboard_role_count": 0, "matching_roles": 0})["allowed"]
    assert access.decide({"is_admin": 0, "dashboard_role_count": 2, "matching_roles": 1})["allowed"]
    assert access.decide({"is_admin": 0, "dashboard_role_count": 2, "matching_roles": 0}) == {
        "allowed": False,
        "reason": "no_dashboard_access",
    }


async def test_access_check_disabled_allows():
    assert await access.check_dashboard_access("a@b.c", "1") == {"allowed": True}


def test_guest_token_route(user_client, use_service):
    use_service(SupersetService(url="http://superset", guest_token="pre-made"))
    resp = user_client.post("/api/superset/guest-token", json={"dashboard_id": 7})
    assert resp.status_code == 200
    assert resp.json() == {"token": "pre-made", "expires_in": 3600}


def test_guest_token_requires_dashboard(user_client, use_service, monkeypatch):
    monkeypatch.delenv("SUPERSET_DASHBOARD_ID", raising=False)
    use_service(SupersetService(url="http://superset", guest_token="pre-made"))
    assert user_client.post("/api/superset/guest-token", json={}).status_code == 400


def test_guest_token_denied(user_client, use_service, monkeypatch):
    use_service(SupersetService(url="http://superset", guest_token="pre-made"))

    async def deny(email, dashboard_id):
        return {"allowed": False, "reason": "no_dashboard_access"}

    monkeypatch.setattr(access, "check_dashboard_access", deny)

    resp = user_client.post("/api/superset/guest-token", json={"dashboard_id": "7"})

    assert resp.status_code == 403
    assert resp.json()["detail"] == {"error": "Dashboard access denied", "reason": "no_dashboard_access"}


def test_dashboard_not_found(user_client, use_service):
    use_service(SupersetService(url="http://superset", api_key="key-1", guest_token="", transport=superset_transport([])))
    assert user_client.get("/api/superset/dashboards/404").status_code == 404


def test_dashboard_upstream_failure_is_502(user_client, use_service):
    use_service(SupersetService(url="http://superset", api_key="key-1", guest_token="", transport=superset_transport([])))
    resp = user_client.get("/api/superset/dashboards/5")
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "HTTP_500"
