"""
Onboarding of one tenant: phone provider, two actions, MFA factor.

This is a best-effort saga. Steps run in order, the first failure aborts the
rest, and nothing already applied is rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ...security.hmac import canonical_domain
from ..errors import InvariantViolation, ProvisioningError, TenantError
from .actions import ActionProvisioner, build_action_descriptor
from .management import ManagementClient
from .models import ActionRecord, PhoneProviderUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhoneAction:
    name: str
    trigger_id: str
    trigger_version: str


# account-linking (database connections) first, then the MFA challenge
PHONE_ACTIONS = (
    PhoneAction("Custom Phone Provider", "custom-phone-provider", "v1"),
    PhoneAction("Custom Phone Provider - MFA", "send-phone-message", "v2"),
)

# (path under guardian/factors, body, what) in the order they are applied
MFA_STEPS = (
    ("sms", {"enabled": True}, "enable SMS factor"),
    ("phone/selected-provider", {"provider": "phone-message-hook"}, "set SMS provider"),
    ("phone/message-types", {"message_types": ["sms", "voice"]}, "set message types"),
)


class ProvisioningOrchestrator:
    def __init__(
        self,
        management: ManagementClient,
        provisioner: ActionProvisioner,
        *,
        callback_url: str,
        hmac_secret: str,
    ) -> None:
        self._management = management
        self._provisioner = provisioner
        self._callback_url = callback_url
        self._hmac_secret = hmac_secret

    async def enable_phone_delivery(self, domain: str, access_token: str, chat_id: int) -> list[ActionRecord]:
        """
        Run the whole onboarding for ``chat_id`` against ``domain``.

        Returns the deployed actions. Raises ProvisioningError with the failed step.
        """
        domain = canonical_domain(domain)

        try:
            await self.activate_phone_provider(domain, access_token)
        except TenantError as exc:
            raise ProvisioningError("activate phone provider", exc) from exc

        deployed: list[ActionRecord] = []
        for action in PHONE_ACTIONS:
            descriptor = build_action_descriptor(
                name=action.name,
                trigger_id=action.trigger_id,
                trigger_version=action.trigger_version,
                domain=domain,
                chat_id=chat_id,
                callback_url=self._callback_url,
                hmac_secret=self._hmac_secret,
            )
            try:
                deployed.append(await self._provisioner.provision(domain, access_token, descriptor))
            except ProvisioningError:
                if deployed:
                    logger.error(
                        "Tenant %s is in an inconsistent state: %s provisioned, %s failed. "
                        "Operator attention required, check actions and bindings.",
                        domain,
                        ", ".join(a.name for a in deployed),
                        action.name,
                    )
                raise

        try:
            await self.enable_mfa(domain, access_token)
        except TenantError as exc:
            logger.error(
                "Tenant %s has both actions deployed but MFA is not fully enabled. Operator attention required.",
                domain,
            )
            raise ProvisioningError("enable MFA", exc) from exc

        logger.info("Phone delivery enabled on %s for chat %s", domain, chat_id)
        return deployed

    async def activate_phone_provider(self, domain: str, access_token: str) -> None:
        providers = await self._management.get_phone_providers(domain, access_token)
        if not providers:
            raise InvariantViolation(f"no phone provider configured on {domain}")

        provider = providers[0]
        await self._management.update_phone_provider(domain, access_token, provider.id, PhoneProviderUpdate())
        logger.info("Custom phone provider %s activated on %s", provider.id, domain)

    async def enable_mfa(self, domain: str, access_token: str) -> None:
        for path, body, what in MFA_STEPS:
            await self._management.put_guardian(domain, access_token, path, body, what)
        logger.info("MFA enabled on %s", domain)
