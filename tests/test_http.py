from __future__ import annotations

import httpx
import pytest

from core import convert, http
from core.config import parse_duration_s


async def test_retry_operation_retries_until_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise http.UpstreamError("HTTP_503", "unavailable", 503)
        return "ok"

    assert await http.retry_operation(flaky, max_attempts=3, delay_s=0) == "ok"
    assert len(calls) == 3


async def test_retry_operation_reraises_last_error():
    calls = []

    async def broken():
        calls.append(1)
        raise http.UpstreamError("HTTP_500", f"boom {len(calls)}", 500)

    with pytest.raises(http.UpstreamError, match="boom 2"):
        await http.retry_operation(broken, max_attempts=2, delay_s=0)
    assert len(calls) == 2


async def test_retry_operation_backs_off_exponentially():
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    async def broken():
        raise http.UpstreamError("HTTP_502", "bad gateway", 502)

    with pytest.raises(http.UpstreamError):
        await http.retry_operation(broken, max_attempts=3, delay_s=1.0, sleep=record_sleep)
    assert delays == [1.0, 2.0]


def test_raise_for_status_message():
    resp = httpx.Response(404, text="x" * 500, request=httpx.Request("GET", "https://api.test/a"))
    with pytest.raises(http.UpstreamError) as exc:
        http.raise_for_status(resp)
    assert exc.value.code == "HTTP_404"
    assert exc.value.status_code == 404
    assert str(exc.value) == f"HTTP 404: Not Found. Response: {'x' * 200}"


def test_normalize_error_codes():
    network = http.normalize_error(httpx.ConnectError("refused"))
    assert network.code == "NETWORK_ERROR"
    assert http.normalize_error(ValueError("odd")).code == "UNKNOWN_ERROR"
    original = http.UpstreamError("HTTP_401", "nope", 401)
    assert http.normalize_error(original) is original
    assert original.to_dict() == {"code": "HTTP_401", "message": "nope", "status": 401}


def test_chunked_and_scheme():
    assert list(http.chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert http.ensure_scheme("school.nexquare.com") == "https://school.nexquare.com"
    assert http.ensure_scheme("http://local") == "http://local"


def test_parse_duration():
    assert parse_duration_s("8h", 0) == 28800
    assert parse_duration_s("45s", 0) == 45
    assert parse_duration_s("", 7) == 7
    assert parse_duration_s("soon", 7) == 7


def test_convert_helpers():
    assert convert.as_int("12") == 12
    assert convert.as_int("x") is None
    assert convert.as_bool("true") is True
    assert convert.pick({"a": None, "b": 2}, "a", "b") == 2
    assert convert.json_text(None) == "[]"
    assert convert.json_text(["en"]) == '["en"]'
