"""Wire models for the tenant management and authorization APIs."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ActionTrigger(BaseModel):
    id: str
    version: str


class Dependency(BaseModel):
    name: str
    version: str


class Secret(BaseModel):
    name: str
    value: str


class ActionDescriptor(BaseModel):
    """Create/update payload. Always sent in full, never diffed against the remote copy."""

    name: str
    code: str
    supported_triggers: list[ActionTrigger]
    runtime: str = "node18"
    secrets: list[Secret] = Field(default_factory=list)
    dependencies: list[Dependency] = Field(default_factory=list)

    @property
    def trigger(self) -> ActionTrigger:
        return self.supported_triggers[0]


class ActionRecord(BaseModel):
    """Action as read back from the tenant."""

    id: str
    name: str
    status: str = "pending"
    supported_triggers: list[ActionTrigger] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    model_config = {"extra": "ignore"}

    @property
    def is_built(self) -> bool:
        return self.status == "built"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"


class ActionList(BaseModel):
    total: int = 0
    actions: list[ActionRecord] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class BindingRef(BaseModel):
    type: Literal["action_id", "binding_id", "action_name"]
    value: str


class Binding(BaseModel):
    """Binding of an action to a trigger, as read back (``id`` set) or as sent (``ref`` set)."""

    display_name: str
    id: str | None = None
    ref: BindingRef | None = None

    model_config = {"extra": "ignore"}


class BindingList(BaseModel):
    bindings: list[Binding] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class TenantCredential(BaseModel):
    """Management API access token. Lives for one provisioning run only."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0

    model_config = {"extra": "ignore"}

    def __repr__(self) -> str:
        # токен в логи не пишем
        return f"TenantCredential(token_type={self.token_type!r}, expires_in={self.expires_in})"

    __str__ = __repr__


class DeviceAuthorization(BaseModel):
    """Response of the device-code endpoint."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None = None
    expires_in: int
    interval: int = 5

    model_config = {"extra": "ignore"}

    @property
    def poll_interval(self) -> float:
        return float(max(self.interval, 1))

    @property
    def link(self) -> str:
        return self.verification_uri_complete or self.verification_uri


class PhoneProvider(BaseModel):
    id: str
    name: str | None = None
    channel: str | None = None
    disabled: bool = False

    model_config = {"extra": "ignore"}


class PhoneProviderList(BaseModel):
    providers: list[PhoneProvider] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class PhoneProviderConfiguration(BaseModel):
    delivery_methods: list[str] = Field(default_factory=lambda: ["text"])


class PhoneProviderUpdate(BaseModel):
    name: str = "custom"
    disabled: bool = False
    configuration: PhoneProviderConfiguration = Field(default_factory=PhoneProviderConfiguration)
