from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from tenants import repository, schemas, service

ROW = {
    "tenant_config_id": 1,
    "domain": "school.test",
    "authority_tenant": None,
    "client_id": "client-1",
    "client_secret": "shh",
    "display_name": "School",
    "is_active": True,
}


def test_authority_prefers_tenant_over_domain():
    assert service.authority_for(ROW) == "https://login.microsoftonline.com/school.test"
    assert service.authority_for({**ROW, "authority_tenant": "tid-123"}) == "https://login.microsoftonline.com/tid-123"


def test_mask_secret():
    assert service.mask_secret(ROW)["client_secret"] == service.SECRET_MASK
    assert service.mask_secret({**ROW, "client_secret": None})["client_secret"] == ""


async def test_lookup_normalizes_domain(monkeypatch):
    lookup = AsyncMock(return_value=ROW)
    monkeypatch.setattr(repository, "get_active_by_domain", lookup)
    result = await service.lookup_public("  School.TEST ")
    lookup.assert_awaited_once_with("school.test")
    assert result.clientId == "client-1"
    assert result.displayName == "School"


async def test_lookup_unknown_domain_is_404(monkeypatch):
    monkeypatch.setattr(repository, "get_active_by_domain", AsyncMock(return_value=None))
    with pytest.raises(HTTPException) as exc:
        await service.lookup_public("other.test")
    assert exc.value.status_code == 404


async def test_create_rejects_existing_domain(monkeypatch):
    monkeypatch.setattr(repository, "get_active_by_domain", AsyncMock(return_value=ROW))
    with pytest.raises(HTTPException) as exc:
        await service.create_config(
            schemas.CreateTenantConfigRequest(domain="school.test", client_id="c", client_secret="s"),
            created_by=None,
        )
    assert exc.value.status_code == 400


def test_public_lookup_route(client, monkeypatch):
    monkeypatch.setattr(repository, "get_active_by_domain", AsyncMock(return_value=ROW))
    resp = client.get("/api/auth/microsoft/tenant", params={"domain": "school.test"})
    assert resp.status_code == 200
    assert resp.json() == {
        "clientId": "client-1",
        "authority": "https://login.microsoftonline.com/school.test",
        "displayName": "School",
    }


def test_list_route_masks_secrets(admin_client, monkeypatch):
    monkeypatch.setattr(repository, "list_configs", AsyncMock(return_value=[ROW]))
    resp = admin_client.get("/api/microsoft-tenant-config")
    assert resp.status_code == 200
    assert resp.json()[0]["client_secret"] == service.SECRET_MASK
