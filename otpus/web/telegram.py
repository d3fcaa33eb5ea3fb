from __future__ import annotations

import hmac
import logging

from aiohttp import web

from ..config import settings
from ..metrics import webhook_errors_total
from .keys import BOT, DISPATCHER

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


async def webhook_handler(request: web.Request) -> web.Response:
    secret = request.headers.get(SECRET_HEADER, "")
    if not hmac.compare_digest(secret.encode(), settings.WEBHOOK_SECRET.encode()):
        logger.warning("Telegram webhook call with invalid secret token")
        webhook_errors_total.labels(endpoint="telegram", code="401").inc()
        return web.Response(status=401, text="unauthorized")

    try:
        data = await request.json()
    except ValueError:
        logger.exception("Failed to read JSON body for webhook")
        webhook_errors_total.labels(endpoint="telegram", code="400").inc()
        return web.Response(status=400, text="invalid json")

    logger.debug("Webhook update received: %s", data.get("update_id"))

    try:
        # скармливаем апдейт aiogram как сырой dict
        await request.app[DISPATCHER].feed_raw_update(request.app[BOT], data)
    except Exception:
        # Телеге лучше вернуть 200, чтобы она не спамила ретраями
        webhook_errors_total.labels(endpoint="telegram", code="500").inc()
        logger.exception("Failed to process update")

    return web.Response(text="ok")
