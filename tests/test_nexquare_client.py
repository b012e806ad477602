from __future__ import annotations

import httpx
import pytest

from core.http import UpstreamError
from nexquare import client as nex_client
from nexquare.client import NexquareClient

CONFIG = {"id": 7, "domain_url": "school.nexquare.io/", "client_id": "cid", "client_secret": "secret"}


@pytest.fixture(autouse=True)
def clean_token_cache():
    nex_client.clear_token_cache()
    yield
    nex_client.clear_token_cache()


def make_client(handler) -> NexquareClient:
    return NexquareClient(CONFIG, transport=httpx.MockTransport(handler), retry_delay_s=0, page_delay_s=0)


def test_empty_domain_is_config_error():
    with pytest.raises(UpstreamError) as exc:
        NexquareClient({"id": 1, "domain_url": ""})
    assert exc.value.code == "CONFIG_ERROR"


def test_base_url_gets_scheme():
    assert nex_client.build_base_url("school.nexquare.io/") == "https://school.nexquare.io"


async def test_token_is_cached_per_config():
    token_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/v1/token":
            token_calls.append(request.content.decode())
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer tok-1"
        return httpx.Response(200, json={"orgs": []})

    async with make_client(handler) as client:
        await client.get_json("/anything")
        await client.get_json("/anything")

    assert len(token_calls) == 1
    assert "grant_type=client_credentials" in token_calls[0]
    assert "client_id=cid" in token_calls[0]


async def test_401_refreshes_token_once():
    issued = iter(["stale", "fresh"])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/v1/token":
            return httpx.Response(200, json={"access_token": next(issued)})
        if request.headers["Authorization"] == "Bearer stale":
            return httpx.Response(401)
        return httpx.Response(200, json={"ok": True})

    async with make_client(handler) as client:
        assert await client.get_json("/data") == {"ok": True}


async def test_missing_access_token_is_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "bearer"})

    async with make_client(handler) as client:
        with pytest.raises(UpstreamError) as exc:
            await client.get_token()
    assert exc.value.code == "AUTH_ERROR"


async def test_paginate_offset_stops_on_short_page():
    offsets = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/v1/token":
            return httpx.Response(200, json={"access_token": "tok"})
        offset = int(request.url.params["offset"])
        offsets.append(offset)
        size = 2 if offset < 4 else 1
        return httpx.Response(200, json={"users": [{"n": offset + i} for i in range(size)]})

    async with make_client(handler) as client:
        items = await client.paginate_offset("/users", lambda page: page["users"], limit=2)

    assert offsets == [0, 2, 4]
    assert [i["n"] for i in items] == [0, 1, 2, 3, 4]


async def test_request_file_returns_content_type():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/v1/token":
            return httpx.Response(200, json={"access_token": "tok"})
        return httpx.Response(200, content=b"a,b\n1,2\n", headers={"content-type": "text/csv"})

    async with make_client(handler) as client:
        content, content_type = await client.request_file("/export")

    assert content == b"a,b\n1,2\n"
    assert content_type == "text/csv"
