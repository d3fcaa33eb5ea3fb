"""Payloads of the browser auth form (deep link query and JSON submission)."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from ..security.hmac import canonical_domain

AUTH_TYPES = ("tenant_personal", "auth_ephemeral", "auth_client_credentials")


class DeviceFlowStrategy(BaseModel):
    """User authorizes on the tenant in the browser; we poll for the token."""

    auth_type: Literal["tenant_personal"] = "tenant_personal"


class EphemeralTokenStrategy(BaseModel):
    """User pastes a management API token they already have."""

    auth_type: Literal["auth_ephemeral"] = "auth_ephemeral"
    access_token: str = Field(min_length=1)


class ClientCredentialsStrategy(BaseModel):
    """Machine-to-machine application credentials of the tenant."""

    auth_type: Literal["auth_client_credentials"] = "auth_client_credentials"
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)


AuthStrategy = Annotated[
    Union[DeviceFlowStrategy, EphemeralTokenStrategy, ClientCredentialsStrategy],
    Field(discriminator="auth_type"),
]

auth_strategy_adapter: TypeAdapter[AuthStrategy] = TypeAdapter(AuthStrategy)


class AuthFormQuery(BaseModel):
    """Query string of GET /bot/auth-form, as produced by the bot's deep link."""

    chat_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    auth_type: Literal["tenant_personal", "auth_ephemeral", "auth_client_credentials"]


class AuthFormSubmission(BaseModel):
    """
    JSON body of POST /bot/auth-form.

    The strategy-specific fields (access_token, client_id, client_secret) sit
    next to these at the top level and are parsed separately into AuthStrategy.
    """

    chat_id: str = Field(min_length=1)
    message_id: str = ""
    signature: str = Field(min_length=1)
    auth_type: str
    domain: str

    model_config = {"extra": "allow"}

    @field_validator("domain")
    @classmethod
    def _canonical(cls, value: str) -> str:
        domain = canonical_domain(value)
        if not 4 <= len(domain) <= 255:
            raise ValueError("invalid domain format")
        return domain

    @property
    def chat_id_int(self) -> int:
        return int(self.chat_id)

    @property
    def message_id_int(self) -> int | None:
        return int(self.message_id) if self.message_id.isdigit() else None

    def strategy(self) -> AuthStrategy:
        """Strategy-specific part of the body; raises ValidationError when fields are missing."""
        return auth_strategy_adapter.validate_python(self.model_dump())
