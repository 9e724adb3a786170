"""Tests for the retrying HTTP client."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, List, Optional

import httpx
import pytest

from ribbon_core import (
    ApiClient,
    ApiClientConfig,
    AppError,
    AuthError,
    ErrorCode,
    ErrorLogger,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
)

BASE_URL = "https://api.ribbon.test/v1"

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingSleep:
    """Records backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(
    handler: Handler,
    sleep: RecordingSleep,
    error_logger: Optional[ErrorLogger] = None,
    **config: object,
) -> ApiClient:
    return ApiClient(
        ApiClientConfig(base_url=BASE_URL, **config),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        random=lambda: 0.5,  # zero jitter
        error_logger=error_logger,
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


async def test_get_returns_json(sleep: RecordingSleep) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"recipients": []})

    async with make_client(handler, sleep) as api:
        response = await api.get("/recipients")

    assert response.data == {"recipients": []}
    assert response.status_code == 200
    assert str(seen[0].url) == f"{BASE_URL}/recipients"
    assert sleep.delays == []


async def test_post_sends_json_body(sleep: RecordingSleep) -> None:
    bodies: List[object] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"id": "r1"})

    async with make_client(handler, sleep) as api:
        response = await api.post("/recipients", {"name": "Sam"}, headers={"X-Request-Id": "abc"})

    assert bodies == [{"name": "Sam"}]
    assert response.data == {"id": "r1"}


async def test_per_request_headers(sleep: RecordingSleep) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    async with make_client(handler, sleep) as api:
        await api.get("/ping", headers={"X-Request-Id": "abc"})
        await api.get("/ping")

    assert seen[0].headers["X-Request-Id"] == "abc"
    assert "X-Request-Id" not in seen[1].headers


async def test_server_error_retried_until_exhausted(sleep: RecordingSleep) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500, json={"message": "boom"})

    async with make_client(handler, sleep, max_retries=3, retry_delay=1.0) as api:
        with pytest.raises(ServerError) as exc_info:
            await api.get("/recipients")

    assert calls == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "boom"
    assert exc_info.value.details["attempt"] == 3


async def test_not_found_is_not_retried(sleep: RecordingSleep) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, json={"message": "No such recipient"})

    async with make_client(handler, sleep) as api:
        with pytest.raises(NotFoundError, match="No such recipient"):
            await api.get("/recipients/missing")

    assert calls == 1
    assert sleep.delays == []


async def test_rate_limit_then_success(sleep: RecordingSleep) -> None:
    responses = [
        httpx.Response(429, json={"message": "slow down"}),
        httpx.Response(200, json={"ok": True}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    async with make_client(handler, sleep) as api:
        response = await api.get("/recipients")

    assert response.data == {"ok": True}
    assert sleep.delays == [1.0]


async def test_timeout_is_retried(sleep: RecordingSleep) -> None:
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    async with make_client(handler, sleep, timeout=0.01, max_retries=1) as api:
        with pytest.raises(RequestTimeoutError) as exc_info:
            await api.get("/slow")

    assert calls == 2
    assert exc_info.value.code == ErrorCode.TIMEOUT_ERROR.value
    assert exc_info.value.details["timeout"] == 0.01


async def test_timed_out_request_is_cancelled(sleep: RecordingSleep) -> None:
    cancelled: List[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        try:
            await asyncio.sleep(1)
        except asyncio.CancelledError:
            cancelled.append(request.url.path)
            raise
        return httpx.Response(200, json={})

    async with make_client(handler, sleep, timeout=0.01, max_retries=0) as api:
        with pytest.raises(RequestTimeoutError):
            await api.get("/slow")

    assert cancelled == ["/v1/slow"]


async def test_per_request_timeout_override(sleep: RecordingSleep) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    async with make_client(handler, sleep, max_retries=0) as api:
        with pytest.raises(RequestTimeoutError):
            await api.get("/slow", timeout=0.01)


async def test_connect_error_becomes_network_error(sleep: RecordingSleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler, sleep, max_retries=2) as api:
        with pytest.raises(NetworkError) as exc_info:
            await api.get("/recipients")

    assert exc_info.value.code == ErrorCode.NETWORK_ERROR.value
    assert len(sleep.delays) == 2


async def test_transport_timeout_becomes_timeout_error(sleep: RecordingSleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    async with make_client(handler, sleep, max_retries=0) as api:
        with pytest.raises(RequestTimeoutError):
            await api.get("/recipients")


@pytest.mark.parametrize(
    ("status", "error_type", "code"),
    [
        (401, AuthError, ErrorCode.AUTH_ERROR.value),
        (403, PermissionDeniedError, ErrorCode.PERMISSION_ERROR.value),
        (429, RateLimitError, ErrorCode.RATE_LIMIT_ERROR.value),
        (400, AppError, "INVALID_NAME"),
    ],
)
async def test_error_mapping(sleep: RecordingSleep, status: int, error_type: type, code: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "nope", "code": "INVALID_NAME"})

    async with make_client(handler, sleep, max_retries=0) as api:
        with pytest.raises(error_type) as exc_info:
            await api.get("/recipients")

    assert exc_info.value.code == code
    assert exc_info.value.status_code == status


async def test_non_json_error_uses_reason_phrase(sleep: RecordingSleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream down")

    async with make_client(handler, sleep, max_retries=0) as api:
        with pytest.raises(ServerError, match="Service Unavailable") as exc_info:
            await api.get("/recipients")

    assert exc_info.value.status_code == 503


async def test_non_json_success_is_rejected(sleep: RecordingSleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html></html>")

    async with make_client(handler, sleep) as api:
        with pytest.raises(AppError, match="Invalid response content type"):
            await api.get("/recipients")

    assert sleep.delays == []


async def test_empty_body(sleep: RecordingSleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    async with make_client(handler, sleep) as api:
        response = await api.delete("/recipients/r1")

    assert response.data is None
    assert response.status_code == 204


async def test_auth_token(sleep: RecordingSleep) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    async with make_client(handler, sleep) as api:
        api.set_auth_token("token-abc")
        await api.get("/me")
        api.clear_auth_token()
        await api.get("/me")

    assert seen[0].headers["Authorization"] == "Bearer token-abc"
    assert "Authorization" not in seen[1].headers


async def test_update_config(sleep: RecordingSleep) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    async with make_client(handler, sleep) as api:
        config = api.update_config(base_url="https://api.ribbon.test/v2", max_retries=5)
        await api.get("/ping")

    assert config.max_retries == 5
    assert str(seen[0].url) == "https://api.ribbon.test/v2/ping"


def test_retry_delay_bounds() -> None:
    for value in (0.0, 0.25, 0.5, 0.999):
        api = ApiClient(ApiClientConfig(retry_delay=1.0), random=lambda v=value: v)
        for attempt in range(4):
            base = 2 ** attempt
            assert base * 0.75 <= api.get_retry_delay(attempt) <= base * 1.25


def test_retry_delay_is_capped() -> None:
    api = ApiClient(ApiClientConfig(retry_delay=1.0), random=lambda: 0.5)
    assert api.get_retry_delay(10) == 30.0

    high = ApiClient(ApiClientConfig(retry_delay=1.0), random=lambda: 0.999)
    assert high.get_retry_delay(10) <= 30.0 * 1.25


def test_should_retry() -> None:
    api = ApiClient(ApiClientConfig(max_retries=2))

    assert api.should_retry(NetworkError(), 0)
    assert api.should_retry(ServerError(status_code=502), 1)
    assert api.should_retry(RateLimitError(), 0)
    assert not api.should_retry(NotFoundError(), 0)
    assert not api.should_retry(AppError("bad", status_code=400), 0)
    assert not api.should_retry(NetworkError(), 2)


async def test_final_failure_is_logged(sleep: RecordingSleep) -> None:
    error_logger = ErrorLogger()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"message": "bad gateway"})

    async with make_client(handler, sleep, error_logger, max_retries=1) as api:
        with pytest.raises(ServerError):
            await api.get("/recipients")

    logged = error_logger.get_errors_by_code(ErrorCode.SERVER_ERROR.value)
    assert len(logged) == 1
    assert logged[0].details["context"]["component"] == "ApiClient"
    assert logged[0].details["attempt"] == 1
