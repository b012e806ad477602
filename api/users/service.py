"""
User management: create, update, deactivate, reset password.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from auth import repository as auth_repository
from auth import security
from auth import service as auth_service

from . import schemas

logger = logging.getLogger(__name__)


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


async def list_users() -> list[dict]:
    rows = await auth_repository.list_users()
    return [auth_service.to_user_response(row).model_dump() for row in rows]


async def get_user(email: str) -> dict:
    row = await auth_repository.get_user_by_email(email)
    if row is None:
        raise _not_found()
    return auth_service.to_user_response(row).model_dump()


async def create_user(payload: schemas.CreateUserRequest, *, created_by: str | None) -> dict:
    email = security.normalize_email(payload.email)
    if not security.is_valid_email(email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email format")

    if await auth_repository.get_user_by_email(email) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User with this email already exists")

    password_hash: str | None = None
    temporary_password: str | None = None
    is_temporary = False

    if payload.auth_type == security.AUTH_TYPE_PASSWORD:
        if payload.password:
            errors = security.validate_password(payload.password)
            if errors:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(errors))
            password_hash = security.hash_password(payload.password)
        else:
            temporary_password = security.generate_temporary_password()
            password_hash = security.hash_password(temporary_password)
            is_temporary = True

    row = await auth_repository.create_user(
        email=email,
        display_name=payload.display_name,
        auth_type=payload.auth_type,
        password_hash=password_hash,
        is_temporary_password=is_temporary,
        created_by=created_by,
    )
    logger.info("user_created email=%s auth_type=%s by=%s", email, payload.auth_type, created_by)

    result: dict = {"user": auth_service.to_user_response(row).model_dump()}
    if temporary_password is not None:
        # Returned exactly once; only the hash is stored.
        result["temporary_password"] = temporary_password
    return result


async def update_user(email: str, payload: schemas.UpdateUserRequest) -> dict:
    row = await auth_repository.update_user(
        email,
        display_name=payload.display_name,
        is_active=payload.is_active,
    )
    if row is None:
        raise _not_found()
    return auth_service.to_user_response(row).model_dump()


async def deactivate_user(email: str, *, acting_email: str) -> dict:
    if security.normalize_email(email) == security.normalize_email(acting_email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    if not await auth_repository.deactivate_user(email):
        raise _not_found()
    logger.info("user_deactivated email=%s by=%s", email, acting_email)
    return {"success": True}


async def reset_password(email: str) -> dict:
    row = await auth_repository.get_user_by_email(email)
    if row is None:
        raise _not_found()
    if str(row.get("auth_type") or "") != security.AUTH_TYPE_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password reset is only available for password accounts",
        )

    temporary_password = security.generate_temporary_password()
    await auth_repository.set_password(
        email,
        password_hash=security.hash_password(temporary_password),
        is_temporary=True,
    )
    logger.info("password_reset email=%s", email)
    return {"success": True, "temporary_password": temporary_password}
