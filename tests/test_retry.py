from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)

from otpus.services.retry import NO_RETRY_STATUSES, RetryConfig, RetryingTransport, execute_with_retry


class _Script:
    """Отдаёт заранее заданные ответы/исключения по очереди и запоминает запросы."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"attempt": len(self.requests)})


def _client(script: _Script, sleeps: list[float]) -> httpx.AsyncClient:
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    transport = RetryingTransport(httpx.MockTransport(script), RetryConfig(), sleep=_sleep)
    return httpx.AsyncClient(transport=transport)


def test_backoff_doubles_and_is_capped():
    config = RetryConfig(max_attempts=10, initial_backoff=0.1, max_backoff=2.0)

    assert [config.backoff(n) for n in (1, 2, 3)] == pytest.approx([0.1, 0.2, 0.4])
    assert config.backoff(9) == 2.0


def test_at_least_one_attempt():
    assert RetryConfig(max_attempts=0).max_attempts == 1


@pytest.mark.asyncio
async def test_retries_5xx_then_returns_success():
    script = _Script(503, 502, 200)
    sleeps: list[float] = []

    async with _client(script, sleeps) as client:
        resp = await client.get("https://tenant.example.com/api/v2/actions/actions")

    assert resp.status_code == 200
    assert resp.json() == {"attempt": 3}
    assert sleeps == pytest.approx([0.1, 0.2])


@pytest.mark.asyncio
async def test_gives_back_last_response_when_attempts_run_out():
    script = _Script(429, 500, 503)
    sleeps: list[float] = []

    async with _client(script, sleeps) as client:
        resp = await client.get("https://tenant.example.com/")

    assert resp.status_code == 503
    assert len(script.requests) == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_statuses_excluded_by_request_are_returned_at_once():
    script = _Script(429, 503, 200)
    sleeps: list[float] = []
    extensions = {NO_RETRY_STATUSES: frozenset({429})}

    async with _client(script, sleeps) as client:
        first = await client.post("https://tenant.example.com/oauth/token", json={}, extensions=extensions)
        # остальные коды по-прежнему ретраятся
        second = await client.post("https://tenant.example.com/oauth/token", json={}, extensions=extensions)

    assert first.status_code == 429
    assert second.status_code == 200
    assert len(script.requests) == 3
    assert sleeps == pytest.approx([0.1])


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    script = _Script(400)
    sleeps: list[float] = []

    async with _client(script, sleeps) as client:
        resp = await client.post("https://tenant.example.com/oauth/token", json={"a": 1})

    assert resp.status_code == 400
    assert sleeps == []


@pytest.mark.asyncio
async def test_transport_errors_retry_and_body_is_replayed():
    script = _Script(httpx.ConnectError("refused"), httpx.ReadTimeout("slow"), 201)
    sleeps: list[float] = []

    async with _client(script, sleeps) as client:
        resp = await client.post("https://tenant.example.com/api/v2/actions/actions", json={"name": "x"})

    assert resp.status_code == 201
    assert len(script.requests) == 3
    assert len({r.content for r in script.requests}) == 1
    assert b"name" in script.requests[-1].content


@pytest.mark.asyncio
async def test_transport_error_raised_after_last_attempt():
    script = _Script(httpx.ConnectError("a"), httpx.ConnectError("b"), httpx.ConnectError("c"))
    sleeps: list[float] = []

    async with _client(script, sleeps) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get("https://tenant.example.com/")

    assert len(script.requests) == 3


# --- Telegram ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_execute_with_retry_waits_retry_after():
    method = MagicMock()
    func = AsyncMock(side_effect=[TelegramRetryAfter(method, "Too Many Requests", retry_after=7), "sent"])
    sleep = AsyncMock()

    result = await execute_with_retry(func, RetryConfig(), sleep=sleep)

    assert result == "sent"
    sleep.assert_awaited_once_with(7)


@pytest.mark.asyncio
async def test_execute_with_retry_backs_off_on_server_and_network_errors():
    method = MagicMock()
    func = AsyncMock(
        side_effect=[TelegramServerError(method, "Bad Gateway"), TelegramNetworkError(method, "reset"), "ok"]
    )
    sleep = AsyncMock()

    assert await execute_with_retry(func, RetryConfig(initial_backoff=0.5), sleep=sleep) == "ok"
    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_execute_with_retry_does_not_retry_bad_request():
    func = AsyncMock(side_effect=TelegramBadRequest(MagicMock(), "chat not found"))
    sleep = AsyncMock()

    with pytest.raises(TelegramBadRequest):
        await execute_with_retry(func, RetryConfig(), sleep=sleep)

    assert func.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_execute_with_retry_reraises_after_last_attempt():
    func = AsyncMock(side_effect=TelegramServerError(MagicMock(), "down"))
    sleep = AsyncMock()

    with pytest.raises(TelegramServerError):
        await execute_with_retry(func, RetryConfig(max_attempts=2), sleep=sleep)

    assert func.await_count == 2
