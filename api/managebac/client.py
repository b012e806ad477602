"""
ManageBac REST client.

- Auth: `auth-token` header with the school's API token
- Base URL: always normalized to `https://api.managebac.com/v2` style
- Lists: page/per_page pagination, `meta.total_pages` drives the loop
- Every call is retried with exponential backoff (see `core.http`)
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

import httpx

from core.http import UpstreamError, ensure_scheme, normalize_error, raise_for_status, retry_operation

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.managebac.com"
API_HOST = "api.managebac.com"
TIMEOUT_S = 30.0
RETRY_ATTEMPTS = 3
PER_PAGE = 250

ENDPOINTS = {
    "school": "/school",
    "academic_years": "/school/academic-years",
    "grades": "/school/grades",
    "subjects": "/school/subjects",
    "teachers": "/teachers",
    "students": "/students",
    "classes": "/classes",
    "year_groups": "/year-groups",
}

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def build_base_url(base_url: str | None) -> str:
    """
    Normalize a configured base URL to the v2 API root.

    School subdomains (`myschool.managebac.com`) are swapped for the shared
    API host.
    """
    url = (base_url or DEFAULT_BASE_URL).strip().rstrip("/")
    host = urlsplit(ensure_scheme(url)).hostname or ""
    if host.endswith(".managebac.com") and host != API_HOST:
        logger.info("managebac_subdomain_rewritten host=%s", host)
        url = DEFAULT_BASE_URL
    url = ensure_scheme(url)
    if "/v2" not in url:
        url = f"{url}/v2"
    return url


def build_url(endpoint: str, base_url: str | None) -> str:
    path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    return f"{build_base_url(base_url)}{path}"


def build_headers(api_token: str, method: str = "GET") -> dict[str, str]:
    headers = {
        "auth-token": api_token,
        "Cache-Control": "no-cache",
        "Accept": "*/*",
    }
    if method.upper() in _BODY_METHODS:
        headers["Content-Type"] = "application/json"
    return headers


def unwrap(resp: Any) -> Any:
    """
    Return `resp["data"]` when present, else the response itself.
    """
    if isinstance(resp, dict) and resp.get("data") is not None:
        return resp["data"]
    return resp


def page_items(resp: Any, data_key: str) -> list[Any]:
    raw = unwrap(resp)
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        items = raw.get(data_key)
        return items if isinstance(items, list) else []
    return []


def total_pages(resp: Any) -> int:
    raw = unwrap(resp)
    meta = None
    if isinstance(resp, dict):
        meta = resp.get("meta")
    if meta is None and isinstance(raw, dict):
        meta = raw.get("meta")
    if isinstance(meta, dict) and meta.get("total_pages") is not None:
        try:
            return int(meta["total_pages"])
        except (TypeError, ValueError):
            return 1
    return 1


class ManageBacClient:
    def __init__(
        self,
        api_token: str,
        base_url: str | None = None,
        *,
        timeout_s: float = TIMEOUT_S,
        max_attempts: int = RETRY_ATTEMPTS,
        retry_delay_s: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not (api_token or "").strip():
            raise UpstreamError("CONFIG_ERROR", "ManageBac API token is empty.")
        self.api_token = api_token.strip()
        self.base_url = build_base_url(base_url)
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._http = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ManageBacClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Call one endpoint and return the decoded JSON body.

        Raises `UpstreamError` after the last failed attempt.
        """
        url = build_url(endpoint, self.base_url)
        method = method.upper()

        async def _send() -> Any:
            resp = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers=build_headers(self.api_token, method),
            )
            raise_for_status(resp)
            return resp.json()

        try:
            return await retry_operation(_send, max_attempts=self.max_attempts, delay_s=self.retry_delay_s)
        except Exception as e:
            err = normalize_error(e)
            logger.error("managebac_request_failed url=%s code=%s error=%s", url, err.code, err)
            raise err from e

    async def get_data(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        return unwrap(await self.request(endpoint, params=params))

    async def fetch_all_paginated(
        self,
        endpoint: str,
        data_key: str,
        params: dict[str, Any] | None = None,
    ) -> list[Any]:
        """
        Fetch every page of a list endpoint and return the concatenated items.
        """
        items: list[Any] = []
        page = 1
        pages = 1
        while True:
            query = {**(params or {}), "page": page, "per_page": PER_PAGE}
            resp = await self.request(endpoint, params=query)
            batch = page_items(resp, data_key)
            items.extend(batch)
            pages = total_pages(resp)
            if batch:
                logger.debug("managebac_page endpoint=%s page=%s total_pages=%s items=%s", endpoint, page, pages, len(batch))
            page += 1
            if page > pages:
                break
        return items
