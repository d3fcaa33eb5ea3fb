"""
Connecting a chat to a tenant: credential strategy -> provisioning -> chat report.

The ephemeral token and client credentials strategies resolve within the
caller's request. The device flow returns as soon as the user code is in the
chat and finishes in a background poller, one per chat.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiogram.utils.text_decorations import html_decoration

from ..metrics import onboarding_total, provisioning_step_failures_total
from ..utils.format import mask_chat_id
from .auth0.credentials import CredentialAcquirer
from .auth0.device_flow import DeviceFlowPoller
from .auth0.models import ActionRecord, DeviceAuthorization, TenantCredential
from .auth0.orchestrator import ProvisioningOrchestrator
from .errors import ProvisioningError
from .message_store import get_message
from .notifier import ChatNotifier

logger = logging.getLogger(__name__)


class ChatDeliveryFailed(Exception):
    """The chat could not be told something it must know to continue."""


class OnboardingService:
    def __init__(
        self,
        acquirer: CredentialAcquirer,
        orchestrator: ProvisioningOrchestrator,
        notifier: ChatNotifier,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.acquirer = acquirer
        self._orchestrator = orchestrator
        self._notifier = notifier
        self._clock = clock
        self._sleep = sleep
        # последний поллер чата, для вытеснения
        self._pollers: dict[int, DeviceFlowPoller] = {}
        # все незавершённые поллеры, включая вытесненные, которые ещё провиженят
        self._live: set[DeviceFlowPoller] = set()

    async def onboard_with_credential(
        self,
        domain: str,
        credential: TenantCredential,
        chat_id: int,
        message_id: int | None = None,
        *,
        strategy: str,
    ) -> list[ActionRecord]:
        """
        Provision the tenant and report the outcome in the chat, exactly once.

        ``message_id`` is the bot's prompt to edit; without it a new message is sent.
        ProvisioningError is re-raised after the chat was told.
        """
        try:
            actions = await self._orchestrator.enable_phone_delivery(domain, credential.access_token, chat_id)
        except ProvisioningError as exc:
            provisioning_step_failures_total.labels(step=exc.step).inc()
            onboarding_total.labels(strategy=strategy, result="failed").inc()
            text = await get_message(
                "onboarding.failed",
                variables={"domain": html_decoration.quote(domain), "step": html_decoration.quote(exc.step)},
            )
            await self._notifier.edit_or_send(chat_id, message_id, text)
            raise

        onboarding_total.labels(strategy=strategy, result="succeeded").inc()
        text = await get_message(
            "onboarding.success",
            variables={
                "domain": html_decoration.quote(domain),
                "actions": html_decoration.quote(", ".join(a.name for a in actions)),
            },
        )
        if not await self._notifier.edit_or_send(chat_id, message_id, text):
            # тенант уже настроен, только сообщение не дошло
            logger.warning("Onboarding of %s succeeded but chat %s was not notified", domain, mask_chat_id(chat_id))
        return actions

    async def start_device_flow(self, domain: str, chat_id: int) -> DeviceAuthorization:
        """
        Issue a device code, put it in the chat and start polling in the background.

        Raises TenantError when the tenant refuses the code and ChatDeliveryFailed
        when the chat can't receive it; no poller is started in either case.
        """
        authorization = await self.acquirer.initiate_device_flow(domain)

        text = await get_message(
            "device.code",
            variables={
                "user_code": html_decoration.quote(authorization.user_code),
                "link": html_decoration.quote(authorization.link),
                "minutes": authorization.expires_in // 60,
            },
        )
        if await self._notifier.send(chat_id, text) is None:
            onboarding_total.labels(strategy="tenant_personal", result="undeliverable").inc()
            raise ChatDeliveryFailed(f"device code for chat {mask_chat_id(chat_id)} was not delivered")

        poller = DeviceFlowPoller(
            self.acquirer,
            domain,
            authorization,
            on_authorized=lambda credential: self._on_device_authorized(domain, chat_id, credential),
            on_expired=lambda exc: self._on_device_stopped(chat_id, "expired", "device.expired"),
            on_failed=lambda exc: self._on_device_stopped(chat_id, "failed", "device.failed"),
            clock=self._clock,
            sleep=self._sleep,
        )
        self._register(chat_id, poller)
        self._live.add(poller)
        poller.start().add_done_callback(lambda _task: self._forget(chat_id, poller))
        return authorization

    async def _on_device_authorized(self, domain: str, chat_id: int, credential: TenantCredential) -> None:
        try:
            await self.onboard_with_credential(domain, credential, chat_id, strategy="tenant_personal")
        except ProvisioningError:
            # уже залогировано оркестратором и сообщено в чат
            pass
        except asyncio.CancelledError:
            logger.error(
                "Onboarding of %s for chat %s interrupted by shutdown. Tenant may be partially provisioned, "
                "operator attention required.",
                domain,
                mask_chat_id(chat_id),
            )
            raise

    async def _on_device_stopped(self, chat_id: int, result: str, message_key: str) -> None:
        onboarding_total.labels(strategy="tenant_personal", result=result).inc()
        await self._notifier.send(chat_id, await get_message(message_key))

    def _register(self, chat_id: int, poller: DeviceFlowPoller) -> None:
        previous = self._pollers.get(chat_id)
        if previous is not None and not previous.state.is_terminal:
            logger.info("Device flow for chat %s superseded, cancelling previous poller", mask_chat_id(chat_id))
            previous.cancel()
        self._pollers[chat_id] = poller

    def _forget(self, chat_id: int, poller: DeviceFlowPoller) -> None:
        self._live.discard(poller)
        if self._pollers.get(chat_id) is poller:
            del self._pollers[chat_id]

    def active_poller(self, chat_id: int) -> DeviceFlowPoller | None:
        poller = self._pollers.get(chat_id)
        if poller is None or (poller.task is not None and poller.task.done()):
            return None
        return poller

    async def shutdown(self) -> None:
        """Cancel every running poller, superseded ones included, and wait for them to stop."""
        live = list(self._live)
        tasks = [p.task for p in live if p.task is not None and not p.task.done()]
        for poller in live:
            poller.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d device flow pollers", len(tasks))
        self._pollers.clear()
        self._live.clear()

