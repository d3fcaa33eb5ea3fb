"""
Idempotent provisioning of one tenant action.

lookup by name -> create or full update -> wait for "built" -> deploy -> rebind.
Re-running with the same descriptor converges to the same tenant state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from ...metrics import action_build_wait_seconds
from ...security.hmac import canonical_domain, sign_domain_token
from ..errors import (
    ActionBuildFailed,
    ActionBuildTimeout,
    InvariantViolation,
    ProvisioningError,
    TenantError,
)
from .management import ManagementClient
from .models import (
    ActionDescriptor,
    ActionRecord,
    ActionTrigger,
    Binding,
    BindingRef,
    Dependency,
    Secret,
)

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "action_templates"

# trigger id -> source template of the action bound to it
TRIGGER_TEMPLATES = {
    "custom-phone-provider": "onExecuteCustomPhoneProvider.js",
    "send-phone-message": "onExecuteSendPhoneMessage.js",
}

ACTION_RUNTIME = "node18"
ACTION_DEPENDENCIES = (Dependency(name="axios", version="1.7.7"),)


def load_action_source(trigger_id: str) -> str:
    try:
        template = TRIGGER_TEMPLATES[trigger_id]
    except KeyError:
        raise ValueError(f"unknown action type: {trigger_id}") from None
    return (TEMPLATES_DIR / template).read_text(encoding="utf-8")


def build_action_descriptor(
    *,
    name: str,
    trigger_id: str,
    trigger_version: str,
    domain: str,
    chat_id: int,
    callback_url: str,
    hmac_secret: str,
) -> ActionDescriptor:
    """
    Full action payload for one chat on one tenant.

    The bearer token is bound to the canonical domain and chat id, so the OTP
    webhook can recompute it from the headers the action sends back.
    """
    domain = canonical_domain(domain)
    return ActionDescriptor(
        name=name,
        code=load_action_source(trigger_id),
        supported_triggers=[ActionTrigger(id=trigger_id, version=trigger_version)],
        runtime=ACTION_RUNTIME,
        secrets=[
            Secret(name="BOT_GATEWAY_URL", value=callback_url),
            Secret(name="BOT_GATEWAY_TOKEN", value=sign_domain_token(domain, chat_id, hmac_secret)),
            Secret(name="BOT_GATEWAY_CHAT_ID", value=str(chat_id)),
            Secret(name="AUTH0_DOMAIN", value=domain),
        ],
        dependencies=list(ACTION_DEPENDENCIES),
    )


def reconcile_bindings(existing: list[Binding], action_name: str, action_id: str) -> list[Binding]:
    """
    New binding list for a trigger: every other binding kept by reference, in
    its original order, then the action itself last.

    Bindings already carrying ``action_name`` are dropped, so exactly one
    binding with that display name survives.
    """
    bindings: list[Binding] = []
    for binding in existing:
        if binding.display_name == action_name:
            logger.debug("Action %s already bound, re-binding to %s", action_name, action_id)
            continue
        ref = BindingRef(type="binding_id", value=binding.id) if binding.id else binding.ref
        if ref is None:
            raise InvariantViolation(f"binding {binding.display_name!r} has neither id nor ref")
        bindings.append(Binding(display_name=binding.display_name, ref=ref))

    bindings.append(Binding(display_name=action_name, ref=BindingRef(type="action_id", value=action_id)))
    return bindings


class ActionProvisioner:
    def __init__(
        self,
        management: ManagementClient,
        *,
        build_poll_interval: float = 1.5,
        build_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._management = management
        self._build_poll_interval = build_poll_interval
        self._build_timeout = build_timeout
        self._sleep = sleep
        self._clock = clock

    async def provision(self, domain: str, access_token: str, descriptor: ActionDescriptor) -> ActionRecord:
        """
        Make ``descriptor`` the single deployed, bound action of its trigger.

        Every failure is raised as ProvisioningError naming the step.
        """
        name = descriptor.name
        trigger_id = descriptor.trigger.id

        step = "lookup"
        try:
            existing = await self._management.find_action(domain, access_token, name)

            if existing is not None:
                step = "update"
                action = await self._management.update_action(domain, access_token, existing.id, descriptor)
                logger.info("Action updated: %s (%s) on %s", name, action.id, domain)
            else:
                step = "create"
                action = await self._management.create_action(domain, access_token, descriptor)
                logger.info("Action created: %s (%s) on %s", name, action.id, domain)

            step = "build"
            action = await self.wait_until_built(domain, access_token, action)

            step = "deploy"
            await self._management.deploy_action(domain, access_token, action.id)
            logger.info("Action deployed: %s (%s) on %s", name, action.id, domain)

            step = "bindings"
            current = await self._management.get_bindings(domain, access_token, trigger_id)
            bindings = reconcile_bindings(current, name, action.id)
            await self._management.replace_bindings(domain, access_token, trigger_id, bindings)
            logger.info(
                "Bindings updated for %s on %s: %d total, %s last",
                trigger_id,
                domain,
                len(bindings),
                name,
            )
        except TenantError as exc:
            logger.error("Provisioning step %s failed for action %s on %s: %s", step, name, domain, exc)
            raise ProvisioningError(step, exc, action_name=name) from exc

        return action

    async def wait_until_built(self, domain: str, access_token: str, action: ActionRecord) -> ActionRecord:
        """
        Poll the action by name until it reports "built".

        Raises ActionBuildFailed on "failed", ActionBuildTimeout past the deadline
        and InvariantViolation if the action disappears meanwhile.
        """
        started = self._clock()
        deadline = started + self._build_timeout

        while not action.is_built:
            if action.is_failed:
                raise ActionBuildFailed(action.name)
            if self._clock() >= deadline:
                raise ActionBuildTimeout(action.name, self._build_timeout, action.status)

            logger.info("Waiting for action %s to be built on %s (status: %s)", action.name, domain, action.status)
            await self._sleep(self._build_poll_interval)

            refreshed = await self._management.find_action(domain, access_token, action.name)
            if refreshed is None:
                raise InvariantViolation(f"action {action.name!r} disappeared while building")
            action = refreshed

        action_build_wait_seconds.observe(self._clock() - started)
        return action
