"""Obtaining a management API token for a tenant, one strategy at a time."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ...schemas.auth_form import (
    AuthStrategy,
    ClientCredentialsStrategy,
    DeviceFlowStrategy,
    EphemeralTokenStrategy,
)
from ...security.hmac import canonical_domain
from ..errors import AuthorizationPending, NetworkFailure, RemoteRejection
from ..retry import NO_RETRY_STATUSES
from .management import parse_model
from .models import DeviceAuthorization, TenantCredential

logger = logging.getLogger(__name__)

# public client registered for the device-authorization flow
DEFAULT_DEVICE_FLOW_CLIENT_ID = "2iZo3Uczt5LFHacKdM0zzgUO2eG2uDjT"

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

# everything the provisioning run touches: actions, phone provider, guardian factors
MANAGEMENT_SCOPE = " ".join(
    [
        "read:actions",
        "create:actions",
        "update:actions",
        "read:phone_providers",
        "update:phone_providers",
        "update:guardian_factors",
    ]
)

# 403 error codes that mean "keep polling"
_PENDING_ERRORS = {"authorization_pending", "slow_down"}


def _audience(domain: str) -> str:
    return f"https://{canonical_domain(domain)}/api/v2/"


class CredentialAcquirer:
    def __init__(self, http: httpx.AsyncClient, device_client_id: str = DEFAULT_DEVICE_FLOW_CLIENT_ID) -> None:
        self._http = http
        self._device_client_id = device_client_id

    async def _post(
        self,
        domain: str,
        path: str,
        body: dict[str, Any],
        what: str,
        extensions: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"https://{canonical_domain(domain)}{path}"
        try:
            return await self._http.post(url, json=body, extensions=extensions)
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"{what} failed: {exc}") from exc

    async def initiate_device_flow(self, domain: str) -> DeviceAuthorization:
        """Ask the tenant for a device code the user confirms in a browser."""
        resp = await self._post(
            domain,
            "/oauth/device/code",
            {
                "client_id": self._device_client_id,
                "scope": MANAGEMENT_SCOPE,
                "audience": _audience(domain),
            },
            "device flow initiation",
        )
        if not resp.is_success:
            raise RemoteRejection("device flow initiation rejected", resp.status_code, resp.text)
        authorization = parse_model(DeviceAuthorization, resp, "device code")
        logger.info(
            "Device flow started for %s (expires in %ss, interval %ss)",
            canonical_domain(domain),
            authorization.expires_in,
            authorization.interval,
        )
        return authorization

    async def poll_device_token(self, domain: str, device_code: str) -> TenantCredential:
        """
        One poll of the token endpoint.

        Raises AuthorizationPending while the user has not confirmed yet; any other
        error (denied, expired code, 5xx after retries, garbage body) is fatal.
        """
        resp = await self._post(
            domain,
            "/oauth/token",
            {
                "grant_type": DEVICE_CODE_GRANT,
                "device_code": device_code,
                "client_id": self._device_client_id,
            },
            "token polling",
            # 429 slow_down is handled by the poller, not retried right away
            extensions={NO_RETRY_STATUSES: frozenset({429})},
        )
        pending = _pending_error(resp)
        if pending is not None:
            raise AuthorizationPending(pending, slow_down=pending == "slow_down")
        if not resp.is_success:
            raise RemoteRejection("device token request rejected", resp.status_code, resp.text)
        return parse_model(TenantCredential, resp, "token")

    async def exchange_client_credentials(self, domain: str, client_id: str, client_secret: str) -> TenantCredential:
        resp = await self._post(
            domain,
            "/oauth/token",
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "audience": _audience(domain),
                "grant_type": "client_credentials",
            },
            "client credentials flow",
        )
        if not resp.is_success:
            raise RemoteRejection("client credentials rejected", resp.status_code, resp.text)
        return parse_model(TenantCredential, resp, "token")

    @staticmethod
    def accept_ephemeral_token(token: str) -> TenantCredential:
        token = (token or "").strip()
        if not token:
            raise ValueError("access token is required")
        return TenantCredential(access_token=token)

    async def acquire(self, strategy: AuthStrategy, domain: str) -> TenantCredential:
        """Token for the strategies that resolve within the request."""
        if isinstance(strategy, EphemeralTokenStrategy):
            return self.accept_ephemeral_token(strategy.access_token)
        if isinstance(strategy, ClientCredentialsStrategy):
            return await self.exchange_client_credentials(domain, strategy.client_id, strategy.client_secret)
        if isinstance(strategy, DeviceFlowStrategy):
            raise TypeError("device flow resolves asynchronously, use initiate_device_flow()")
        raise TypeError(f"unknown auth strategy: {strategy!r}")


def _oauth_error(resp: httpx.Response) -> str | None:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data.get("error") if isinstance(data, dict) else None


def _pending_error(resp: httpx.Response) -> str | None:
    """OAuth error code when the response means "keep polling", else None."""
    if resp.status_code == 403:
        error = _oauth_error(resp)
        if error is None:
            return "authorization_pending"
        return error if error in _PENDING_ERRORS else None
    if resp.status_code == 429 and _oauth_error(resp) == "slow_down":
        return "slow_down"
    return None
