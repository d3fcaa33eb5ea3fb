"""Retry with exponential backoff for outbound calls (tenant API via httpx, Telegram via aiogram)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from aiogram.exceptions import TelegramNetworkError, TelegramRetryAfter, TelegramServerError

from ..metrics import outbound_retries_total

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# request extension: statuses the caller handles itself, returned without retry
NO_RETRY_STATUSES = "otpus.no_retry_statuses"


class RetryConfig:
    """Retry configuration. ``max_attempts`` counts the first try."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 2.0,
        backoff_multiplier: float = 2.0,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

    def backoff(self, attempt: int) -> float:
        """Wait before retry number ``attempt`` (1-based)."""
        delay = self.initial_backoff * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff)


class RetryingTransport(httpx.AsyncBaseTransport):
    """
    httpx transport that retries transient failures transparently.

    Retries on connection/timeout errors and on 429/5xx responses. Callers see
    either the last response or the last transport exception, so retries are
    never counted as attempts by the code above.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        config: RetryConfig | None = None,
        *,
        target: str = "tenant",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._config = config or RetryConfig()
        self._target = target
        self._sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        config = self._config
        retryable = RETRYABLE_STATUS_CODES - request.extensions.get(NO_RETRY_STATUSES, frozenset())
        # buffered body can be replayed on every attempt
        await request.aread()

        for attempt in range(1, config.max_attempts + 1):
            last = attempt == config.max_attempts
            try:
                response = await self._transport.handle_async_request(request)
            except httpx.TransportError as exc:
                if last:
                    raise
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s",
                    request.method,
                    request.url.copy_with(query=None),
                    attempt,
                    config.max_attempts,
                    exc,
                )
            else:
                if response.status_code not in retryable or last:
                    return response
                logger.warning(
                    "%s %s -> HTTP %d (attempt %d/%d)",
                    request.method,
                    request.url.copy_with(query=None),
                    response.status_code,
                    attempt,
                    config.max_attempts,
                )
                await response.aclose()

            outbound_retries_total.labels(target=self._target).inc()
            await self._sleep(config.backoff(attempt))

        raise AssertionError("unreachable")  # pragma: no cover

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_http_client(
    config: RetryConfig,
    timeout: float = 10.0,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    target: str = "tenant",
) -> httpx.AsyncClient:
    """Shared outbound client with the retry policy baked into its transport."""
    return httpx.AsyncClient(
        transport=RetryingTransport(transport, config, target=target),
        timeout=timeout,
    )


async def execute_with_retry(  # noqa: UP047
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run a Telegram Bot API call with retry and exponential backoff.

    TelegramRetryAfter waits for the advertised delay, server and network errors
    retry with backoff. Client errors (bad request, forbidden, ...) are raised
    immediately, as is the last error once attempts run out.
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func()
        except TelegramRetryAfter as e:
            if attempt == config.max_attempts:
                raise
            retry_after = e.retry_after or 1
            logger.warning(
                "Rate limited (429), waiting %d seconds (attempt %d/%d)",
                retry_after,
                attempt,
                config.max_attempts,
            )
            outbound_retries_total.labels(target="telegram").inc()
            await sleep(retry_after)
        except (TelegramServerError, TelegramNetworkError) as e:
            if attempt == config.max_attempts:
                raise
            backoff = config.backoff(attempt)
            logger.warning(
                "Telegram API error (attempt %d/%d): %s, retrying in %.1f seconds",
                attempt,
                config.max_attempts,
                e,
                backoff,
            )
            outbound_retries_total.labels(target="telegram").inc()
            await sleep(backoff)

    raise AssertionError("unreachable")  # pragma: no cover
