"""
Auth security helpers: bcrypt hashing, JWT issue/verify, password rules.
"""

from __future__ import annotations

import re
import secrets
import string
import time
from typing import Any

import bcrypt
import jwt

from core.config import env_int, env_str, parse_duration_s

AUTH_TYPE_PASSWORD = "Password"
AUTH_TYPE_APP_REGISTRATION = "AppRegistration"

SPECIAL_CHARS = "!@#$%^&*"
TEMPORARY_PASSWORD_LENGTH = 16
MIN_PASSWORD_LENGTH = 8

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_rng = secrets.SystemRandom()


class AuthSecurityError(RuntimeError):
    pass


def jwt_secret() -> str:
    # Local default keeps development simple.
    # In production, set JWT_SECRET in environment.
    return env_str("JWT_SECRET", "dev-change-this-secret")


def jwt_algorithm() -> str:
    return env_str("JWT_ALG", "HS256")


def token_expires_in_s() -> int:
    return parse_duration_s(env_str("JWT_EXPIRES_IN", "8h"), 8 * 3600)


def bcrypt_rounds() -> int:
    return env_int("BCRYPT_ROUNDS", 12)


def now_epoch_s() -> int:
    return int(time.time())


def hash_password(plain_password: str) -> str:
    password = (plain_password or "").encode("utf-8")
    if not password:
        raise AuthSecurityError("Password is empty.")
    return bcrypt.hashpw(password, bcrypt.gensalt(rounds=bcrypt_rounds())).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    password = (plain_password or "").encode("utf-8")
    hashed = (password_hash or "").encode("utf-8")
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password, hashed)
    except ValueError:
        return False


def build_access_token(*, email: str, auth_type: str, expires_in_s: int | None = None) -> str:
    issued_at = now_epoch_s()
    ttl = expires_in_s if expires_in_s is not None else token_expires_in_s()

    payload = {
        "email": email,
        "userId": email,
        "authType": auth_type,
        "iat": issued_at,
        "exp": issued_at + ttl,
    }
    return jwt.encode(payload, jwt_secret(), algorithm=jwt_algorithm())


def decode_access_token(token: str) -> dict[str, Any]:
    raw = (token or "").strip()
    if not raw:
        raise AuthSecurityError("Access token is empty.")

    try:
        payload = jwt.decode(raw, jwt_secret(), algorithms=[jwt_algorithm()])
    except jwt.InvalidTokenError as exc:
        raise AuthSecurityError("Invalid or expired token") from exc

    if not str(payload.get("userId") or "").strip():
        raise AuthSecurityError("Invalid or expired token")
    return payload


def verify_token(token: str) -> dict[str, Any] | None:
    try:
        return decode_access_token(token)
    except AuthSecurityError:
        return None


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """
    Random password with at least one upper, lower, digit and special char.
    """
    if length < 4:
        raise AuthSecurityError("Temporary password length must be at least 4.")
    pools = [string.ascii_uppercase, string.ascii_lowercase, string.digits, SPECIAL_CHARS]
    alphabet = "".join(pools)
    chars = [secrets.choice(pool) for pool in pools]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    _rng.shuffle(chars)
    return "".join(chars)


def validate_password(password: str) -> list[str]:
    errors: list[str] = []
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if not any(ch in SPECIAL_CHARS for ch in password):
        errors.append(f"Password must contain at least one special character ({SPECIAL_CHARS})")
    return errors


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match((email or "").strip()))
