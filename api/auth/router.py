"""
FastAPI router for auth endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from core.rate_limit import LOGIN_LIMIT, TENANT_LOOKUP_LIMIT, limiter

from . import dependencies, microsoft, schemas, service

router = APIRouter(prefix="/api/auth")


@router.post("/login", response_model=schemas.LoginResponse)
@limiter.limit(LOGIN_LIMIT)
async def login(request: Request, payload: schemas.LoginRequest) -> schemas.LoginResponse:
    return await service.login(payload)


@router.post("/logout")
async def logout(_: dict = Depends(dependencies.get_current_user_allow_temporary)) -> dict:
    # Tokens are stateless; the client drops its copy.
    return {"success": True, "message": "Logged out successfully"}


@router.post("/change-password")
async def change_password(
    payload: schemas.ChangePasswordRequest,
    current_user: dict = Depends(dependencies.get_current_user_allow_temporary),
) -> dict:
    return await service.change_password(str(current_user["email"]), payload)


@router.get("/me", response_model=schemas.UserResponse)
async def me(current_user: dict = Depends(dependencies.get_current_user)) -> schemas.UserResponse:
    return service.to_user_response(current_user)


@router.get("/microsoft/authorize")
@limiter.limit(TENANT_LOOKUP_LIMIT)
async def microsoft_authorize(
    request: Request,
    domain: str | None = Query(None),
    login_hint: str | None = Query(None),
) -> RedirectResponse:
    return RedirectResponse(await microsoft.authorize_redirect(request, domain, login_hint), status_code=302)


@router.get("/microsoft/callback")
@limiter.limit(TENANT_LOOKUP_LIMIT)
async def microsoft_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
) -> RedirectResponse:
    target = await microsoft.callback_redirect(
        request,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )
    return RedirectResponse(target, status_code=302)
