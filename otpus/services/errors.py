"""Errors raised while talking to a tenant and provisioning it."""

from __future__ import annotations


class TenantError(Exception):
    """Base class for everything that can go wrong against a tenant."""


class NetworkFailure(TenantError):
    """Transport-level failure after the HTTP client gave up retrying."""


class RemoteRejection(TenantError):
    """Non-2xx application response. The message carries the remote body."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(f"{message} (HTTP {status_code}): {body}")
        self.status_code = status_code
        self.body = body


class ParseFailure(TenantError):
    """Response body could not be decoded into the expected shape."""


class AuthorizationPending(TenantError):
    """Device authorization not completed yet. Expected while polling.

    ``slow_down`` is set when the server asked to poll less often.
    """

    def __init__(self, message: str = "authorization pending", *, slow_down: bool = False) -> None:
        super().__init__(message)
        self.slow_down = slow_down


class DeviceFlowExpired(TenantError):
    """Device code deadline passed before the user authorized."""


class InvariantViolation(TenantError):
    """Tenant returned something the provisioning logic cannot work with."""


class ActionBuildFailed(TenantError):
    def __init__(self, action_name: str) -> None:
        super().__init__(f"action {action_name!r} build failed")
        self.action_name = action_name


class ActionBuildTimeout(TenantError):
    def __init__(self, action_name: str, timeout: float, last_status: str | None) -> None:
        super().__init__(f"action {action_name!r} not built after {timeout:.0f}s (last status: {last_status})")
        self.action_name = action_name
        self.last_status = last_status


class ProvisioningError(TenantError):
    """A provisioning step failed; ``step`` names it for logs and chat."""

    def __init__(self, step: str, cause: Exception, action_name: str | None = None) -> None:
        where = f"{step} [{action_name}]" if action_name else step
        super().__init__(f"{where} failed: {cause}")
        self.step = step
        self.action_name = action_name
        self.cause = cause
