"""
Shared fixtures. The database is never touched: repositories and `core.db`
helpers are patched with AsyncMock, upstream HTTP goes through
httpx.MockTransport.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth import dependencies as auth_dependencies
from core.rate_limit import limiter
from main import app

ADMIN_USER = {
    "user_id": "admin@school.test",
    "email": "admin@school.test",
    "display_name": "Admin",
    "auth_type": "Password",
    "is_active": True,
    "is_temporary_password": False,
}


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.delenv("ADMIN_EMAILS", raising=False)
    monkeypatch.delenv("SUPERSET_DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPERSET_GUEST_TOKEN", raising=False)
    monkeypatch.delenv("SUPERSET_API_KEY", raising=False)


@pytest.fixture(autouse=True)
def _no_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def admin_user() -> dict:
    return dict(ADMIN_USER)


@pytest.fixture
def client():
    # No context manager: lifespan (DB pool, scheduler) is not started.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client, admin_user):
    app.dependency_overrides[auth_dependencies.get_current_user] = lambda: admin_user
    app.dependency_overrides[auth_dependencies.require_admin] = lambda: admin_user
    return client


@pytest.fixture
def user_client(client, admin_user):
    app.dependency_overrides[auth_dependencies.get_current_user] = lambda: admin_user
    return client
