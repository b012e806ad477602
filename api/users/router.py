"""
FastAPI router for user management (admin) and the caller's own access.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from access import service as access_service
from auth import dependencies as auth_dependencies

from . import schemas, service

router = APIRouter(prefix="/api/users")


# Declared before "/{email}/..." routes so "me" is never read as an email.
@router.get("/me/access")
async def my_access(current_user: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    schools = await access_service.get_user_school_access(str(current_user["email"]))
    return {"access": schools, "count": len(schools)}


@router.get("")
async def list_users(_: dict = Depends(auth_dependencies.require_admin)) -> dict:
    users = await service.list_users()
    return {"users": users, "count": len(users)}


@router.post("", status_code=201)
async def create_user(
    payload: schemas.CreateUserRequest,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.create_user(payload, created_by=str(current_user["email"]))


@router.get("/{email}")
async def get_user(email: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.get_user(email)


@router.put("/{email}")
async def update_user(
    email: str,
    payload: schemas.UpdateUserRequest,
    _: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.update_user(email, payload)


@router.delete("/{email}")
async def deactivate_user(
    email: str,
    current_user: dict = Depends(auth_dependencies.require_admin),
) -> dict:
    return await service.deactivate_user(email, acting_email=str(current_user["email"]))


@router.post("/{email}/reset-password")
async def reset_password(email: str, _: dict = Depends(auth_dependencies.require_admin)) -> dict:
    return await service.reset_password(email)
