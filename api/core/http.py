"""
Upstream HTTP helpers shared by the ManageBac and Nexquare clients.

- `retry_operation`: bounded retry with exponential backoff (tenacity)
- `raise_for_status`: uniform error text for non-2xx responses
- `normalize_error`: map any failure to an `UpstreamError` with a code
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterator, Sequence, TypeVar

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_S = 1.0
ERROR_BODY_PREVIEW_CHARS = 200


# Upstream failures are explicit and separable from other runtime errors.
class UpstreamError(RuntimeError):
    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self), "status": self.status_code}


def raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return None
    body = resp.text[:ERROR_BODY_PREVIEW_CHARS]
    raise UpstreamError(
        f"HTTP_{resp.status_code}",
        f"HTTP {resp.status_code}: {resp.reason_phrase}. Response: {body}",
        status_code=resp.status_code,
    )


def normalize_error(exc: BaseException) -> UpstreamError:
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, httpx.TransportError):
        return UpstreamError("NETWORK_ERROR", f"Network error: {exc}")
    return UpstreamError("UNKNOWN_ERROR", str(exc) or exc.__class__.__name__)


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_s: float = DEFAULT_DELAY_S,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` up to `max_attempts` times.

    Waits delay_s * 2**(attempt - 1) between attempts and re-raises the last
    error once attempts are exhausted.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=delay_s, min=0),
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    "upstream_retry attempt=%s max_attempts=%s",
                    attempt.retry_state.attempt_number,
                    max_attempts,
                )
            return await operation()
    raise RuntimeError("retry_operation exhausted without result.")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size <= 0:
        raise ValueError("Chunk size must be positive.")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def ensure_scheme(url: str) -> str:
    url = (url or "").strip()
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"https://{url}"
