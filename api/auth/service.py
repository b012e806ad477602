"""
Auth business logic: login, password change, token to user resolution.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from . import repository, schemas, security

logger = logging.getLogger(__name__)

PASSWORD_CHANGE_REQUIRED = "PASSWORD_CHANGE_REQUIRED"
# Enough time to complete a forced password change, nothing more.
PASSWORD_CHANGE_TOKEN_TTL_S = 15 * 60


def password_change_required_error(token: str | None = None) -> HTTPException:
    detail: dict = {"error": "Password change required", "code": PASSWORD_CHANGE_REQUIRED}
    if token:
        detail["token"] = token
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def to_user_response(user_row: dict) -> schemas.UserResponse:
    return schemas.UserResponse(
        email=str(user_row["email"]),
        display_name=user_row.get("display_name"),
        auth_type=str(user_row.get("auth_type") or security.AUTH_TYPE_PASSWORD),
        is_active=bool(user_row.get("is_active", False)),
        is_temporary_password=bool(user_row.get("is_temporary_password", False)),
        last_login=user_row.get("last_login"),
        created_at=user_row.get("created_at"),
    )


async def login(payload: schemas.LoginRequest) -> schemas.LoginResponse:
    user_row = await repository.get_user_by_email(payload.email)
    if user_row is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not bool(user_row.get("is_active", False)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )

    auth_type = str(user_row.get("auth_type") or "")
    if auth_type != security.AUTH_TYPE_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This account uses Microsoft sign-in",
        )

    is_valid = security.verify_password(payload.password, str(user_row.get("password_hash") or ""))
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    email = str(user_row["email"])
    if bool(user_row.get("is_temporary_password", False)):
        short_token = security.build_access_token(
            email=email,
            auth_type=auth_type,
            expires_in_s=PASSWORD_CHANGE_TOKEN_TTL_S,
        )
        raise password_change_required_error(short_token)

    await repository.mark_login(email)
    logger.info("login_ok email=%s", email)

    return schemas.LoginResponse(
        token=security.build_access_token(email=email, auth_type=auth_type),
        expires_in=security.token_expires_in_s(),
        user=to_user_response(user_row),
    )


async def change_password(email: str, payload: schemas.ChangePasswordRequest) -> dict:
    user_row = await repository.get_user_by_email(email)
    if user_row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if str(user_row.get("auth_type") or "") != security.AUTH_TYPE_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password change is only available for password accounts",
        )

    is_temporary = bool(user_row.get("is_temporary_password", False))
    if not is_temporary:
        if not payload.current_password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is required",
            )
        if not security.verify_password(payload.current_password, str(user_row.get("password_hash") or "")):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Current password is incorrect",
            )

    errors = security.validate_password(payload.new_password)
    if errors:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(errors))

    await repository.set_password(
        email,
        password_hash=security.hash_password(payload.new_password),
        is_temporary=False,
    )
    logger.info("password_changed email=%s was_temporary=%s", email, is_temporary)
    return {"success": True, "message": "Password changed successfully"}


async def get_user_from_access_token(access_token: str, *, allow_temporary: bool = False) -> dict:
    payload = security.verify_token(access_token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_row = await repository.get_user_by_email(str(payload["userId"]))
    if user_row is None or not bool(user_row.get("is_active", False)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )

    if not allow_temporary and bool(user_row.get("is_temporary_password", False)):
        raise password_change_required_error()
    return user_row


async def login_app_registration(email: str) -> str:
    """
    App JWT for a Microsoft-verified email. The user must already exist as
    an active `AppRegistration` account.
    """
    user_row = await repository.get_user_by_email(email)
    if user_row is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found. Please contact your administrator to be added to the system.",
        )
    if not bool(user_row.get("is_active", False)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )
    if str(user_row.get("auth_type") or "") != security.AUTH_TYPE_APP_REGISTRATION:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This account uses password login. Please sign in with your password.",
        )

    user_email = str(user_row["email"])
    await repository.mark_login(user_email)
    logger.info("login_ok email=%s auth_type=%s", user_email, security.AUTH_TYPE_APP_REGISTRATION)
    return security.build_access_token(email=user_email, auth_type=security.AUTH_TYPE_APP_REGISTRATION)
