"""Thin client for the tenant management API (``https://<domain>/api/v2``)."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ...security.hmac import canonical_domain
from ..errors import NetworkFailure, ParseFailure, RemoteRejection
from .models import (
    ActionDescriptor,
    ActionList,
    ActionRecord,
    Binding,
    BindingList,
    PhoneProvider,
    PhoneProviderList,
    PhoneProviderUpdate,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def api_url(domain: str, path: str) -> str:
    return f"https://{canonical_domain(domain)}/api/v2/{path.lstrip('/')}"


def parse_model(model: type[M], resp: httpx.Response, what: str) -> M:
    try:
        return model.model_validate(resp.json())
    except (ValueError, ValidationError) as exc:
        raise ParseFailure(f"failed to parse {what} response: {exc}") from exc


class ManagementClient:
    """
    One method per endpoint. Every method raises NetworkFailure, RemoteRejection
    or ParseFailure; nothing here retries on its own, the injected client's
    transport does that.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def _request(
        self,
        method: str,
        domain: str,
        path: str,
        access_token: str,
        *,
        what: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = api_url(domain, path)
        try:
            resp = await self._http.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"network error during {what}: {exc}") from exc

        if not resp.is_success:
            logger.debug("%s %s -> %s %s", method, url, resp.status_code, resp.text)
            raise RemoteRejection(f"failed to {what}", resp.status_code, resp.text)
        return resp

    # --- actions -----------------------------------------------------------

    async def find_action(self, domain: str, access_token: str, name: str) -> ActionRecord | None:
        """Action named ``name``, or None if the tenant has none."""
        resp = await self._request(
            "GET",
            domain,
            "actions/actions",
            access_token,
            params={"actionName": name},
            what="read action",
        )
        actions = parse_model(ActionList, resp, "read action").actions
        # actionName is a filter, not an exact match guarantee
        for action in actions:
            if action.name == name:
                return action
        return None

    async def create_action(self, domain: str, access_token: str, descriptor: ActionDescriptor) -> ActionRecord:
        resp = await self._request(
            "POST",
            domain,
            "actions/actions",
            access_token,
            json=descriptor.model_dump(),
            what="create action",
        )
        return parse_model(ActionRecord, resp, "create action")

    async def update_action(
        self, domain: str, access_token: str, action_id: str, descriptor: ActionDescriptor
    ) -> ActionRecord:
        resp = await self._request(
            "PATCH",
            domain,
            f"actions/actions/{action_id}",
            access_token,
            json=descriptor.model_dump(),
            what="update action",
        )
        return parse_model(ActionRecord, resp, "update action")

    async def deploy_action(self, domain: str, access_token: str, action_id: str) -> None:
        await self._request(
            "POST",
            domain,
            f"actions/actions/{action_id}/deploy",
            access_token,
            what="deploy action",
        )

    async def get_bindings(self, domain: str, access_token: str, trigger_id: str) -> list[Binding]:
        resp = await self._request(
            "GET",
            domain,
            f"actions/triggers/{trigger_id}/bindings",
            access_token,
            what="read bindings",
        )
        return parse_model(BindingList, resp, "read bindings").bindings

    async def replace_bindings(self, domain: str, access_token: str, trigger_id: str, bindings: list[Binding]) -> None:
        body = {"bindings": [b.model_dump(exclude_none=True) for b in bindings]}
        await self._request(
            "PATCH",
            domain,
            f"actions/triggers/{trigger_id}/bindings",
            access_token,
            json=body,
            what="update bindings",
        )

    # --- phone provider & guardian ------------------------------------------

    async def get_phone_providers(self, domain: str, access_token: str) -> list[PhoneProvider]:
        resp = await self._request(
            "GET",
            domain,
            "branding/phone/providers",
            access_token,
            what="read phone provider",
        )
        return parse_model(PhoneProviderList, resp, "read phone provider").providers

    async def update_phone_provider(
        self, domain: str, access_token: str, provider_id: str, update: PhoneProviderUpdate
    ) -> None:
        await self._request(
            "PATCH",
            domain,
            f"branding/phone/providers/{provider_id}",
            access_token,
            json=update.model_dump(),
            what="activate phone provider",
        )

    async def put_guardian(self, domain: str, access_token: str, path: str, body: dict[str, Any], what: str) -> None:
        await self._request("PUT", domain, f"guardian/factors/{path}", access_token, json=body, what=what)
