"""
Superset API client for embedded dashboards.

Guest tokens come from a pre-generated `SUPERSET_GUEST_TOKEN` when set.
Otherwise an access token (SUPERSET_API_KEY, or a CSRF + username/password
login) is cached for 50 minutes and used to mint guest tokens.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from core.config import env_str
from core.http import UpstreamError, normalize_error, raise_for_status

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8088"
TIMEOUT_S = 30.0
ACCESS_TOKEN_TTL_S = 50 * 60
GUEST_TOKEN_DEFAULT_EXPIRES_IN = 3600
GUEST_USER = {"username": "guest", "first_name": "Guest", "last_name": "User"}


def base_url() -> str:
    return env_str("SUPERSET_URL", DEFAULT_BASE_URL).rstrip("/")


def default_dashboard_id() -> str:
    return env_str("SUPERSET_DASHBOARD_ID")


class SupersetService:
    def __init__(
        self,
        *,
        url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        guest_token: str | None = None,
        timeout_s: float = TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = (url or base_url()).rstrip("/")
        self.username = username if username is not None else env_str("SUPERSET_USERNAME", "admin")
        self.password = password if password is not None else env_str("SUPERSET_PASSWORD")
        self.api_key = api_key if api_key is not None else env_str("SUPERSET_API_KEY")
        self.guest_token = guest_token if guest_token is not None else env_str("SUPERSET_GUEST_TOKEN")
        self.timeout_s = timeout_s
        self._transport = transport
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.url, timeout=self.timeout_s, transport=self._transport)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
            raise_for_status(resp)
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise normalize_error(e) from e

    async def get_csrf_token(self) -> str:
        data = await self._request("GET", "/api/v1/security/csrf_token/", headers={"Accept": "application/json"})
        token = data.get("result") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("AUTH_ERROR", "No CSRF token in Superset response")
        return token

    async def get_access_token(self, force_refresh: bool = False) -> str:
        now = time.monotonic()
        if not force_refresh and self._access_token and self._access_token_expires_at > now:
            return self._access_token

        if self.api_key:
            token = self.api_key
        else:
            csrf = await self.get_csrf_token()
            data = await self._request(
                "POST",
                "/api/v1/security/login",
                headers={"X-CSRFToken": csrf, "Accept": "application/json"},
                json={
                    "username": self.username,
                    "password": self.password,
                    "provider": "db",
                    "refresh": True,
                },
            )
            token = data.get("access_token") if isinstance(data, dict) else None
            if not token:
                raise UpstreamError("AUTH_ERROR", "No access token in Superset login response")
            logger.info("superset_authenticated username=%s", self.username)

        self._access_token = token
        self._access_token_expires_at = now + ACCESS_TOKEN_TTL_S
        return token

    async def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self.get_access_token()}"}

    async def generate_guest_token(
        self,
        dashboard_id: str | None = None,
        resources: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        if self.guest_token:
            return {"token": self.guest_token, "expires_in": GUEST_TOKEN_DEFAULT_EXPIRES_IN}

        target = str(dashboard_id or default_dashboard_id())
        body = {
            "resources": resources or [{"type": "dashboard", "id": target}],
            "rls": [],
            "user": dict(GUEST_USER),
        }
        data = await self._request(
            "POST",
            "/api/v1/security/guest_token/",
            headers=await self._auth_headers(),
            json=body,
        )
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("UPSTREAM_ERROR", "No guest token in Superset response")
        return {"token": token, "expires_in": data.get("expires_in") or GUEST_TOKEN_DEFAULT_EXPIRES_IN}

    async def list_dashboards(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/api/v1/dashboard/", headers=await self._auth_headers())
        return (data.get("result") if isinstance(data, dict) else None) or []

    async def get_dashboard(self, dashboard_id: int | str) -> dict[str, Any] | None:
        data = await self._request("GET", f"/api/v1/dashboard/{dashboard_id}", headers=await self._auth_headers())
        return data.get("result") if isinstance(data, dict) else None


_service: SupersetService | None = None


def get_service() -> SupersetService:
    global _service
    if _service is None:
        _service = SupersetService()
        logger.info(
            "superset_configured url=%s guest_token=%s api_key=%s",
            _service.url,
            bool(_service.guest_token),
            bool(_service.api_key),
        )
    return _service
