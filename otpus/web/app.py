from __future__ import annotations

import logging

import httpx
from aiogram import Bot, Dispatcher
from aiohttp import web

from ..config import settings
from ..services.message_store import message_store
from ..services.notifier import ChatNotifier
from ..services.onboarding import OnboardingService
from ..utils.links import AUTH_FORM_PATH, OTP_CALLBACK_PATH, WEBHOOK_PATH, build_webhook_url
from .auth_form import process_auth_form, show_auth_form
from .keys import BOT, DISPATCHER, NOTIFIER, ONBOARDING
from .otp import otp_handler
from .telegram import webhook_handler

logger = logging.getLogger(__name__)


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def ensure_webhook(bot: Bot) -> str:
    """Проверяет и настраивает webhook в Telegram."""
    webhook_url = build_webhook_url(settings.base_url)

    try:
        info = await bot.get_webhook_info()
    except Exception:
        logger.exception("Failed to fetch current webhook info")
        info = None

    if info and info.url == webhook_url:
        logger.info("Webhook already set to %s", webhook_url)
        return webhook_url

    await bot.set_webhook(url=webhook_url, secret_token=settings.WEBHOOK_SECRET, drop_pending_updates=True)
    logger.info("Webhook set to %s (pending updates dropped)", webhook_url)
    return webhook_url


def create_web_app(
    bot: Bot,
    dp: Dispatcher,
    onboarding: OnboardingService,
    notifier: ChatNotifier,
    *,
    http_client: httpx.AsyncClient | None = None,
    set_webhook: bool = False,
) -> web.Application:
    """
    aiohttp-приложение: health, Telegram webhook, форма авторизации, OTP relay.

    On shutdown it stops pollers and pending deletions, then closes the
    tenant HTTP client and the bot session.
    """
    app = web.Application()
    app[BOT] = bot
    app[DISPATCHER] = dp
    app[ONBOARDING] = onboarding
    app[NOTIFIER] = notifier

    app.router.add_get("/health", health_handler)
    app.router.add_post(WEBHOOK_PATH, webhook_handler)
    app.router.add_get(AUTH_FORM_PATH, show_auth_form)
    app.router.add_post(AUTH_FORM_PATH, process_auth_form)
    app.router.add_post(OTP_CALLBACK_PATH, otp_handler)

    async def on_startup(app_: web.Application) -> None:
        message_store.load()
        if set_webhook:
            await ensure_webhook(app_[BOT])
        logger.info("Web app started")

    async def on_shutdown(app_: web.Application) -> None:
        logger.info("Web app shutdown: stopping pollers and closing clients")
        await app_[ONBOARDING].shutdown()
        await app_[NOTIFIER].close()
        if http_client is not None:
            await http_client.aclose()
        await app_[BOT].session.close()

    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)

    return app
