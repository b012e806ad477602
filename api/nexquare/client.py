"""
Nexquare (OneRoster) REST client.

- Auth: OAuth client_credentials against `{domain}/oauth2/v1/token`
- Tokens are cached per config id until 5 minutes before expiry
- A 401 forces one token refresh and one resend
- Lists: offset/limit pagination, stops on an empty or short page
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

import httpx

from core.http import UpstreamError, ensure_scheme, normalize_error, raise_for_status, retry_operation

logger = logging.getLogger(__name__)

TIMEOUT_S = 30.0
RETRY_ATTEMPTS = 3
TOKEN_EXPIRY_BUFFER_S = 300
DEFAULT_TOKEN_TTL_S = 86400
PAGE_LIMIT = 100
PAGE_DELAY_S = 0.1

ENDPOINTS = {
    "token": "/oauth2/v1/token",
    "schools": "/nexquare/ims/oneroster/v1p1/schools",
    "school_scoped": "/ims/oneroster/v1p1/schools",
    "allocation_master": "/ims/oneroster/v1p1/allocationMaster",
    "daily_plan": "/ims/oneroster/v1p1/dailyPlan",
    "daily_attendance": "/ims/oneroster/v1p1/getDailyAttendance",
    "student_assessments": "/ims/oneroster/v1p1/assessment/students",
}

# config id -> (access_token, expires_at epoch seconds)
_token_cache: dict[str, tuple[str, float]] = {}


def clear_token_cache() -> None:
    _token_cache.clear()


def build_base_url(domain_url: str) -> str:
    return ensure_scheme(domain_url).rstrip("/")


def build_headers(access_token: str, content_type: str = "application/json") -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": content_type,
        "Accept": "application/json",
    }


class NexquareClient:
    def __init__(
        self,
        config: dict[str, Any],
        *,
        timeout_s: float = TIMEOUT_S,
        max_attempts: int = RETRY_ATTEMPTS,
        retry_delay_s: float = 1.0,
        page_delay_s: float = PAGE_DELAY_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not (config.get("domain_url") or "").strip():
            raise UpstreamError("CONFIG_ERROR", "Nexquare domain URL is empty.")
        self.config = config
        self.config_key = str(config.get("id"))
        self.base_url = build_base_url(config["domain_url"])
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self.page_delay_s = page_delay_s
        self._http = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "NexquareClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_token(self, *, force_refresh: bool = False) -> str:
        cached = _token_cache.get(self.config_key)
        if cached and not force_refresh and cached[1] > time.time():
            return cached[0]

        resp = await self._http.post(
            f"{self.base_url}{ENDPOINTS['token']}",
            data={
                "grant_type": "client_credentials",
                "client_id": self.config.get("client_id") or "",
                "client_secret": self.config.get("client_secret") or "",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
        )
        raise_for_status(resp)
        body = resp.json()
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise UpstreamError("AUTH_ERROR", "Nexquare token response did not include an access_token.")

        ttl = body.get("expires_in") or DEFAULT_TOKEN_TTL_S
        _token_cache[self.config_key] = (token, time.time() + float(ttl) - TOKEN_EXPIRY_BUFFER_S)
        logger.info("nexquare_token_issued config_id=%s expires_in=%s", self.config_key, ttl)
        return token

    async def _send(self, path: str, params: dict[str, Any] | None) -> httpx.Response:
        url = f"{self.base_url}{path}"
        token = await self.get_token()
        resp = await self._http.get(url, params=params, headers=build_headers(token))
        if resp.status_code == 401:
            logger.info("nexquare_token_rejected config_id=%s refreshing=true", self.config_key)
            token = await self.get_token(force_refresh=True)
            resp = await self._http.get(url, params=params, headers=build_headers(token))
        raise_for_status(resp)
        return resp

    async def _with_retry(self, path: str, params: dict[str, Any] | None) -> httpx.Response:
        try:
            return await retry_operation(
                lambda: self._send(path, params),
                max_attempts=self.max_attempts,
                delay_s=self.retry_delay_s,
            )
        except Exception as e:
            err = normalize_error(e)
            logger.error("nexquare_request_failed path=%s code=%s error=%s", path, err.code, err)
            raise err from e

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = await self._with_retry(path, params)
        return resp.json()

    async def request_file(self, path: str, params: dict[str, Any] | None = None) -> tuple[bytes, str]:
        """
        Fetch a file export and return `(content, content_type)`.
        """
        resp = await self._with_retry(path, params)
        return resp.content, resp.headers.get("content-type") or "application/octet-stream"

    async def paginate_offset(
        self,
        path: str,
        extract: Callable[[Any], list[Any]],
        params: dict[str, Any] | None = None,
        limit: int = PAGE_LIMIT,
    ) -> list[Any]:
        """
        Walk an offset/limit list endpoint until a page comes back empty or short.

        `extract` pulls the item list out of one decoded page.
        """
        items: list[Any] = []
        offset = 0
        while True:
            page = extract(await self.get_json(path, {**(params or {}), "offset": offset, "limit": limit}))
            if not page:
                break
            items.extend(page)
            logger.debug("nexquare_page path=%s offset=%s items=%s total=%s", path, offset, len(page), len(items))
            if len(page) < limit:
                break
            offset += limit
            if self.page_delay_s > 0:
                await asyncio.sleep(self.page_delay_s)
        return items
