from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class GuestTokenRequest(BaseModel):
    dashboard_id: str | int | None = None
    resources: list[dict[str, Any]] | None = None


class GuestTokenResponse(BaseModel):
    token: str
    expires_in: int
