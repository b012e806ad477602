"""
Request rate limiting (slowapi).

Limits are per client IP:
- login:          5 per 15 minutes
- tenant lookup: 60 per minute
- everything else falls under the default of 100 per 15 minutes
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import env_str

LOGIN_LIMIT = "5/15minutes"
TENANT_LOOKUP_LIMIT = "60/minute"
GENERAL_LIMIT = "100/15minutes"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[GENERAL_LIMIT],
    storage_uri=env_str("RATE_LIMIT_STORAGE_URI", "memory://"),
    headers_enabled=False,
)
