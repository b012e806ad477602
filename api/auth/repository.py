"""
Auth persistence helpers (admin.users).

User_ID is the normalized email; `email` is kept as its own column for
display and lookups.
"""

from __future__ import annotations

from core import db

from .security import normalize_email

USER_COLUMNS = """
    user_id, email, display_name, auth_type, password_hash,
    is_temporary_password, is_active, last_login, created_by,
    created_at, updated_at
"""


async def get_user_by_email(email: str) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {USER_COLUMNS}
        FROM admin.users
        WHERE user_id = $1 OR lower(email) = $1
        """,
        normalize_email(email),
    )


async def list_users() -> list[dict]:
    return await db.fetch_all(
        f"""
        SELECT {USER_COLUMNS}
        FROM admin.users
        ORDER BY created_at DESC
        """
    )


async def create_user(
    *,
    email: str,
    display_name: str | None,
    auth_type: str,
    password_hash: str | None,
    is_temporary_password: bool,
    created_by: str | None,
) -> dict:
    email = normalize_email(email)
    row = await db.fetch_one(
        f"""
        INSERT INTO admin.users
          (user_id, email, display_name, auth_type, password_hash,
           is_temporary_password, is_active, created_by)
        VALUES ($1, $1, $2, $3, $4, $5, true, $6)
        RETURNING {USER_COLUMNS}
        """,
        email,
        display_name,
        auth_type,
        password_hash,
        is_temporary_password,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to create user.")
    return row


async def update_user(email: str, *, display_name: str | None, is_active: bool | None) -> dict | None:
    return await db.fetch_one(
        f"""
        UPDATE admin.users
        SET display_name = COALESCE($2, display_name),
            is_active = COALESCE($3, is_active),
            updated_at = now()
        WHERE user_id = $1
        RETURNING {USER_COLUMNS}
        """,
        normalize_email(email),
        display_name,
        is_active,
    )


async def set_password(email: str, *, password_hash: str, is_temporary: bool) -> None:
    await db.execute(
        """
        UPDATE admin.users
        SET password_hash = $2,
            is_temporary_password = $3,
            updated_at = now()
        WHERE user_id = $1
        """,
        normalize_email(email),
        password_hash,
        is_temporary,
    )


async def mark_login(email: str) -> None:
    await db.execute(
        """
        UPDATE admin.users
        SET last_login = now()
        WHERE user_id = $1
        """,
        normalize_email(email),
    )


async def deactivate_user(email: str) -> bool:
    row = await db.fetch_one(
        """
        UPDATE admin.users
        SET is_active = false,
            updated_at = now()
        WHERE user_id = $1
        RETURNING user_id
        """,
        normalize_email(email),
    )
    return row is not None
