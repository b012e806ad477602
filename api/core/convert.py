"""
Loose value coercion for upstream JSON before it is written to Postgres.

Upstream APIs send ids as numbers or strings and dates with or without a
time part. asyncpg wants real Python types, so mapping code funnels values
through these helpers.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any


def as_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            return int(float(str(value).strip()))
        except ValueError:
            return None


def as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in {"1", "true", "yes", "y", "active"}


def as_date(value: Any) -> date | None:
    """
    Parse `YYYY-MM-DD` (optionally followed by a time part) into a date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()[:10]
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def as_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def json_text(value: Any, default: str = "[]") -> str:
    """
    Store lists/dicts as JSON text; pass strings through unchanged.
    """
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return json.dumps(value)


def pick(record: dict[str, Any], *keys: str) -> Any:
    """
    First non-None value among `keys` (snake_case and camelCase spellings).
    """
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None
