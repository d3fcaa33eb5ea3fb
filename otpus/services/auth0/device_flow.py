"""Background polling of the device-authorization token endpoint."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable

from ...metrics import device_flow_outcomes_total
from ..errors import AuthorizationPending, DeviceFlowExpired, TenantError
from .credentials import CredentialAcquirer
from .models import DeviceAuthorization, TenantCredential

logger = logging.getLogger(__name__)

# RFC 8628 3.5
SLOW_DOWN_STEP = 5.0


class DeviceFlowState(str, enum.Enum):
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not DeviceFlowState.POLLING


OnAuthorized = Callable[[TenantCredential], Awaitable[None]]
OnFailure = Callable[[TenantError], Awaitable[None]]


class DeviceFlowPoller:
    """
    polling -> succeeded | expired | failed (| cancelled), each reached once.

    Every tick waits the interval advertised by the authorization server, then
    checks the deadline before polling, so an expired code is never polled again.
    The deadline is taken on the poller's own clock when it is created; a
    slow_down answer stretches the interval by 5 seconds.
    The callbacks run inside the poller task; a callback error is logged and the
    poller still ends in its terminal state.
    """

    def __init__(
        self,
        acquirer: CredentialAcquirer,
        domain: str,
        authorization: DeviceAuthorization,
        *,
        on_authorized: OnAuthorized,
        on_expired: OnFailure,
        on_failed: OnFailure,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._acquirer = acquirer
        self.domain = domain
        self.authorization = authorization
        self._on_authorized = on_authorized
        self._on_expired = on_expired
        self._on_failed = on_failed
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task[DeviceFlowState] | None = None
        self.expires_at = clock() + authorization.expires_in
        self.interval = authorization.poll_interval
        self.state = DeviceFlowState.POLLING
        self.polls = 0

    async def tick(self) -> DeviceFlowState:
        """One poll step, without the wait. No-op once terminal."""
        if self.state.is_terminal:
            return self.state

        if self._clock() >= self.expires_at:
            self._finish(DeviceFlowState.EXPIRED)
            await self._notify(self._on_expired, DeviceFlowExpired("device code expired"))
            return self.state

        self.polls += 1
        try:
            credential = await self._acquirer.poll_device_token(self.domain, self.authorization.device_code)
        except AuthorizationPending as exc:
            if exc.slow_down:
                self.interval += SLOW_DOWN_STEP
                logger.info("Device flow for %s asked to slow down, polling every %.0fs", self.domain, self.interval)
            return self.state
        except TenantError as exc:
            logger.error("Failed to poll for device token on %s: %s", self.domain, exc)
            self._finish(DeviceFlowState.FAILED)
            await self._notify(self._on_failed, exc)
            return self.state

        self._finish(DeviceFlowState.SUCCEEDED)
        await self._notify(self._on_authorized, credential)
        return self.state

    async def run(self) -> DeviceFlowState:
        try:
            while not self.state.is_terminal:
                await self._sleep(self.interval)
                await self.tick()
        except asyncio.CancelledError:
            if not self.state.is_terminal:
                self._finish(DeviceFlowState.CANCELLED)
            raise
        return self.state

    def start(self) -> asyncio.Task[DeviceFlowState]:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"device-flow:{self.domain}")
        return self._task

    def cancel(self) -> None:
        """Stop a running poller (shutdown, superseded by a newer request)."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            # задача могла ещё не стартовать, тогда run() не увидит CancelledError
            if not self.state.is_terminal:
                self._finish(DeviceFlowState.CANCELLED)

    @property
    def task(self) -> asyncio.Task[DeviceFlowState] | None:
        return self._task

    def _finish(self, state: DeviceFlowState) -> None:
        self.state = state
        device_flow_outcomes_total.labels(outcome=state.value).inc()
        logger.info("Device flow for %s finished: %s after %d polls", self.domain, state.value, self.polls)

    async def _notify(self, callback: Callable[..., Awaitable[None]], arg: object) -> None:
        try:
            await callback(arg)
        except Exception:
            logger.exception("Device flow callback failed for %s", self.domain)
