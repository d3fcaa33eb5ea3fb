import asyncio
import logging

import httpx
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BotCommand
from aiohttp import web

from otpus.config import settings
from otpus.handlers import auth as auth_handlers
from otpus.handlers import start as start_handlers
from otpus.metrics import setup_metrics_server
from otpus.middlewares.error_handler import ErrorHandlerMiddleware
from otpus.middlewares.logging import LoggingMiddleware
from otpus.services.auth0.actions import ActionProvisioner
from otpus.services.auth0.credentials import CredentialAcquirer
from otpus.services.auth0.management import ManagementClient
from otpus.services.auth0.orchestrator import ProvisioningOrchestrator
from otpus.services.message_store import message_store
from otpus.services.notifier import ChatNotifier
from otpus.services.onboarding import OnboardingService
from otpus.services.retry import RetryConfig, build_http_client
from otpus.telemetry.logging import init_logging
from otpus.utils.links import build_otp_callback_url
from otpus.web.app import create_web_app

logger = logging.getLogger(__name__)


# --- Bot & dispatcher (общие для обоих режимов) ---------------------------------


def create_bot_and_dispatcher() -> tuple[Bot, Dispatcher]:
    bot_ = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode="HTML"),
    )
    dp_ = Dispatcher()

    dp_.update.middleware(ErrorHandlerMiddleware())
    dp_.update.middleware(LoggingMiddleware())

    dp_.include_router(start_handlers.router)
    dp_.include_router(auth_handlers.router)

    return bot_, dp_


async def setup_bot_commands(bot_: Bot) -> None:
    """Устанавливает меню команд бота."""
    try:
        for language in (None, "ru"):
            commands = [
                BotCommand(command="start", description=await message_store.get_message("commands.start", language=language)),
                BotCommand(command="help", description=await message_store.get_message("commands.help", language=language)),
            ]
            await bot_.set_my_commands(commands, language_code=language)
        logger.info("Bot commands menu set")
    except TelegramAPIError as e:
        logger.warning("Failed to set bot commands: %s. Bot will continue without menu.", e)


def build_services(bot_: Bot) -> tuple[OnboardingService, ChatNotifier, httpx.AsyncClient]:
    """Собирает граф сервисов онбординга вокруг одного HTTP-клиента к тенантам."""
    retry = RetryConfig(
        max_attempts=settings.HTTP_MAX_ATTEMPTS,
        initial_backoff=settings.HTTP_RETRY_WAIT,
        max_backoff=settings.HTTP_RETRY_MAX_WAIT,
    )
    http_client = build_http_client(retry, timeout=settings.HTTP_TIMEOUT)

    management = ManagementClient(http_client)
    provisioner = ActionProvisioner(
        management,
        build_poll_interval=settings.ACTION_BUILD_POLL_INTERVAL,
        build_timeout=settings.ACTION_BUILD_TIMEOUT,
    )
    orchestrator = ProvisioningOrchestrator(
        management,
        provisioner,
        callback_url=build_otp_callback_url(settings.base_url),
        hmac_secret=settings.HMAC_SECRET,
    )
    notifier = ChatNotifier(bot_, retry=retry, message_ttl=settings.MESSAGE_TTL_MINUTES * 60)
    acquirer = CredentialAcquirer(http_client, settings.DEVICE_FLOW_CLIENT_ID)

    return OnboardingService(acquirer, orchestrator, notifier), notifier, http_client


def create_app(bot_: Bot, dp_: Dispatcher, *, set_webhook: bool) -> web.Application:
    onboarding, notifier, http_client = build_services(bot_)
    return create_web_app(bot_, dp_, onboarding, notifier, http_client=http_client, set_webhook=set_webhook)


# --- DEV: long polling + локальный web-сервер для формы и OTP ----------------


async def run_polling() -> None:
    logger.info("Starting polling (dev mode)...")
    bot, dp = create_bot_and_dispatcher()

    app = create_app(bot, dp, set_webhook=False)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.APP_HOST, settings.APP_PORT)
    await site.start()
    logger.info("Web server listening on %s:%s", settings.APP_HOST, settings.APP_PORT)

    await setup_bot_commands(bot)

    try:
        await bot.delete_webhook(drop_pending_updates=False)
        await dp.start_polling(bot)
    finally:
        await runner.cleanup()


# --- PROD: webhook -------------------------------------------------------------


def run_webhook() -> None:
    logger.info(
        "Starting webhook server (prod mode) on %s:%s",
        settings.APP_HOST,
        settings.APP_PORT,
    )
    bot, dp = create_bot_and_dispatcher()
    app = create_app(bot, dp, set_webhook=True)

    async def _commands(app_: web.Application) -> None:
        await setup_bot_commands(bot)

    app.on_startup.append(_commands)
    web.run_app(app, host=settings.APP_HOST, port=settings.APP_PORT)


# --- Entry point ---------------------------------------------------------------


def main() -> None:
    init_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    setup_metrics_server(settings.PROM_PORT)
    logger.info("Prometheus metrics server started on port %s", settings.PROM_PORT)

    # Диагностика конфигурации
    from otpus.utils.diagnostics import print_config_diagnostics

    print_config_diagnostics()

    if settings.BOT_MODE == "dev":
        asyncio.run(run_polling())
    else:
        run_webhook()


if __name__ == "__main__":
    main()
