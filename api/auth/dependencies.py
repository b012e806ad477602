"""
Auth dependencies for protected FastAPI routes.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status

from core.config import env_list

from . import service


def _extract_bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    parts = raw.split(" ", 1)
    if len(parts) != 2 or parts[0].strip().lower() != "bearer" or not parts[1].strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
        )
    return parts[1].strip()


async def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    return _extract_bearer_token(authorization)


async def get_current_user(access_token: str = Depends(get_bearer_token)) -> dict:
    return await service.get_user_from_access_token(access_token)


async def get_current_user_allow_temporary(access_token: str = Depends(get_bearer_token)) -> dict:
    """
    Same as `get_current_user` but lets a temporary-password user through,
    so they can reach the change-password endpoint.
    """
    return await service.get_user_from_access_token(access_token, allow_temporary=True)


def admin_emails() -> set[str]:
    return {email.lower() for email in env_list("ADMIN_EMAILS")}


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    allowed = admin_emails()
    # An empty allow-list means every authenticated user administers the hub.
    if allowed and str(current_user.get("email") or "").lower() not in allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
