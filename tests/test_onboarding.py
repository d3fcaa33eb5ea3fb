import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from otpus.services.auth0.credentials import CredentialAcquirer
from otpus.services.auth0.device_flow import DeviceFlowState
from otpus.services.auth0.models import ActionRecord, DeviceAuthorization, TenantCredential
from otpus.services.auth0.orchestrator import ProvisioningOrchestrator
from otpus.services.errors import AuthorizationPending, ProvisioningError, RemoteRejection
from otpus.services.notifier import ChatNotifier
from otpus.services.onboarding import ChatDeliveryFailed, OnboardingService

DOMAIN = "tenant.example.com"
CHAT_ID = 555

ACTIONS = [
    ActionRecord(id="act_1", name="Custom Phone Provider", status="built"),
    ActionRecord(id="act_2", name="Custom Phone Provider - MFA", status="built"),
]


def _authorization(**overrides) -> DeviceAuthorization:
    data = {
        "device_code": "dev-123",
        "user_code": "WDJB-MJHT",
        "verification_uri": "https://tenant.example.com/activate",
        "verification_uri_complete": "https://tenant.example.com/activate?user_code=WDJB-MJHT",
        "expires_in": 600,
        "interval": 5,
    }
    data.update(overrides)
    return DeviceAuthorization(**data)


@pytest.fixture
def acquirer():
    acquirer = MagicMock(spec=CredentialAcquirer)
    acquirer.initiate_device_flow = AsyncMock(return_value=_authorization())
    acquirer.poll_device_token = AsyncMock(return_value=TenantCredential(access_token="device-token"))
    return acquirer


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock(spec=ProvisioningOrchestrator)
    orchestrator.enable_phone_delivery = AsyncMock(return_value=ACTIONS)
    return orchestrator


@pytest.fixture
def notifier():
    notifier = MagicMock(spec=ChatNotifier)
    notifier.send = AsyncMock(return_value=MagicMock(message_id=99))
    notifier.edit_or_send = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def service(acquirer, orchestrator, notifier, clock):
    return OnboardingService(acquirer, orchestrator, notifier, clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_onboard_with_credential_reports_success(service, orchestrator, notifier):
    actions = await service.onboard_with_credential(
        DOMAIN, TenantCredential(access_token="tok"), CHAT_ID, 7, strategy="auth_ephemeral"
    )

    assert actions == ACTIONS
    orchestrator.enable_phone_delivery.assert_awaited_once_with(DOMAIN, "tok", CHAT_ID)
    chat_id, message_id, text = notifier.edit_or_send.await_args.args
    assert (chat_id, message_id) == (CHAT_ID, 7)
    assert DOMAIN in text
    assert "Custom Phone Provider - MFA" in text


@pytest.mark.asyncio
async def test_onboard_failure_sends_one_message_and_reraises(service, orchestrator, notifier):
    """Тест: при сбое саги в чат уходит ровно одно сообщение об ошибке."""
    error = ProvisioningError("deploy", RemoteRejection("failed to deploy action", 500, "boom"), "Custom Phone Provider")
    orchestrator.enable_phone_delivery.side_effect = error

    with pytest.raises(ProvisioningError):
        await service.onboard_with_credential(
            DOMAIN, TenantCredential(access_token="tok"), CHAT_ID, 7, strategy="auth_client_credentials"
        )

    notifier.edit_or_send.assert_awaited_once()
    text = notifier.edit_or_send.await_args.args[2]
    assert "deploy" in text
    assert DOMAIN in text


@pytest.mark.asyncio
async def test_device_flow_sends_code_and_provisions_in_background(service, acquirer, orchestrator, notifier):
    authorization = await service.start_device_flow(DOMAIN, CHAT_ID)

    assert authorization.user_code == "WDJB-MJHT"
    code_text = notifier.send.await_args_list[0].args[1]
    assert "WDJB-MJHT" in code_text
    assert "user_code=WDJB-MJHT" in code_text
    assert "10 minutes" in code_text

    poller = service.active_poller(CHAT_ID)
    assert poller is not None
    assert await poller.task is DeviceFlowState.SUCCEEDED

    orchestrator.enable_phone_delivery.assert_awaited_once_with(DOMAIN, "device-token", CHAT_ID)
    chat_id, message_id, _ = notifier.edit_or_send.await_args.args
    assert (chat_id, message_id) == (CHAT_ID, None)

    await asyncio.sleep(0)
    assert service.active_poller(CHAT_ID) is None


@pytest.mark.asyncio
async def test_device_flow_provisioning_failure_is_reported_once(service, orchestrator, notifier):
    orchestrator.enable_phone_delivery.side_effect = ProvisioningError("enable MFA", RemoteRejection("x", 403, ""))

    await service.start_device_flow(DOMAIN, CHAT_ID)
    poller = service.active_poller(CHAT_ID)
    await poller.task

    notifier.edit_or_send.assert_awaited_once()
    assert "enable MFA" in notifier.edit_or_send.await_args.args[2]


@pytest.mark.asyncio
async def test_device_flow_expiry_tells_the_chat(service, acquirer, orchestrator, notifier):
    acquirer.initiate_device_flow.return_value = _authorization(expires_in=12)
    acquirer.poll_device_token.side_effect = AuthorizationPending("pending")

    await service.start_device_flow(DOMAIN, CHAT_ID)
    state = await service.active_poller(CHAT_ID).task

    assert state is DeviceFlowState.EXPIRED
    assert "timed out" in notifier.send.await_args_list[-1].args[1]
    orchestrator.enable_phone_delivery.assert_not_awaited()


@pytest.mark.asyncio
async def test_device_flow_poll_failure_tells_the_chat(service, acquirer, notifier):
    acquirer.poll_device_token.side_effect = RemoteRejection("device token request rejected", 403, "access_denied")

    await service.start_device_flow(DOMAIN, CHAT_ID)
    state = await service.active_poller(CHAT_ID).task

    assert state is DeviceFlowState.FAILED
    assert "Authentication failed" in notifier.send.await_args_list[-1].args[1]


@pytest.mark.asyncio
async def test_undeliverable_code_starts_no_poller(service, acquirer, notifier):
    notifier.send.return_value = None

    with pytest.raises(ChatDeliveryFailed):
        await service.start_device_flow(DOMAIN, CHAT_ID)

    assert service.active_poller(CHAT_ID) is None
    acquirer.poll_device_token.assert_not_awaited()


@pytest.mark.asyncio
async def test_initiation_rejection_propagates(service, acquirer, notifier):
    acquirer.initiate_device_flow.side_effect = RemoteRejection("device flow initiation rejected", 401, "")

    with pytest.raises(RemoteRejection):
        await service.start_device_flow(DOMAIN, CHAT_ID)

    notifier.send.assert_not_awaited()


def _blocking_service(acquirer, orchestrator, notifier) -> OnboardingService:
    never = asyncio.Event()

    async def _sleep(seconds: float) -> None:
        await never.wait()

    return OnboardingService(acquirer, orchestrator, notifier, sleep=_sleep)


@pytest.mark.asyncio
async def test_new_device_flow_supersedes_running_one(acquirer, orchestrator, notifier):
    service = _blocking_service(acquirer, orchestrator, notifier)

    await service.start_device_flow(DOMAIN, CHAT_ID)
    first = service.active_poller(CHAT_ID)
    await service.start_device_flow(DOMAIN, CHAT_ID)
    second = service.active_poller(CHAT_ID)

    with pytest.raises(asyncio.CancelledError):
        await first.task
    assert first.state is DeviceFlowState.CANCELLED
    assert second is not first
    assert second.state is DeviceFlowState.POLLING

    await service.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_all_pollers(acquirer, orchestrator, notifier):
    service = _blocking_service(acquirer, orchestrator, notifier)
    await service.start_device_flow(DOMAIN, 1)
    await service.start_device_flow(DOMAIN, 2)
    pollers = [service.active_poller(1), service.active_poller(2)]

    await service.shutdown()

    assert [p.state for p in pollers] == [DeviceFlowState.CANCELLED, DeviceFlowState.CANCELLED]
    assert service.active_poller(1) is None
    acquirer.poll_device_token.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_stops_superseded_poller_that_is_still_provisioning(acquirer, orchestrator, notifier, caplog):
    """Тест: вытесненный поллер уже провиженит тенант, shutdown всё равно его дожидается."""
    entered = asyncio.Event()
    never = asyncio.Event()
    sleeps = 0

    async def _sleep(seconds: float) -> None:
        # первый поллер проходит сразу, второй висит
        nonlocal sleeps
        sleeps += 1
        if sleeps > 1:
            await never.wait()

    async def _provisioning(*args) -> list[ActionRecord]:
        entered.set()
        await never.wait()
        return ACTIONS

    orchestrator.enable_phone_delivery.side_effect = _provisioning
    service = OnboardingService(acquirer, orchestrator, notifier, sleep=_sleep)

    await service.start_device_flow(DOMAIN, CHAT_ID)
    first = service.active_poller(CHAT_ID)
    await entered.wait()
    assert first.state is DeviceFlowState.SUCCEEDED

    await service.start_device_flow(DOMAIN, CHAT_ID)
    second = service.active_poller(CHAT_ID)
    assert second is not first
    assert not first.task.done()

    with caplog.at_level(logging.ERROR):
        await service.shutdown()

    assert first.task.cancelled()
    assert second.state is DeviceFlowState.CANCELLED
    assert "partially provisioned" in caplog.text
    notifier.edit_or_send.assert_not_awaited()
