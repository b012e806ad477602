"""
Environment-driven configuration helpers.

Each feature reads its own keys through these helpers so defaults stay
next to the code that uses them.
"""

from __future__ import annotations

import logging
import os


def env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip() or default


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def env_flag_disabled(name: str) -> bool:
    # Only the literal "false" turns a feature off; anything else keeps it on.
    return os.environ.get(name, "").strip().lower() == "false"


def parse_duration_s(raw: str, default: int) -> int:
    """
    Parse "8h", "30m", "45s", "2d" or a bare number of seconds.
    """
    value = (raw or "").strip().lower()
    if not value:
        return default
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    unit = value[-1]
    number = value[:-1] if unit in units else value
    try:
        amount = int(number)
    except ValueError:
        return default
    return amount * units.get(unit, 1)


def cors_origins() -> list[str]:
    return env_list("CORS_ORIGINS") or [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


def configure_logging() -> None:
    level_name = env_str("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
