from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiogram import BaseMiddleware
from aiogram.exceptions import TelegramBadRequest
from aiogram.types import CallbackQuery, Message, Update

from ..metrics import bot_errors_total
from ..services.message_store import get_message
from ..utils.format import mask_chat_id
from ._events import get_chat_id

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseMiddleware):
    """
    Ловим все исключения, логируем с trace-id + маской chat_id,
    в чат отдаём дружелюбный текст без деталей.
    """

    async def __call__(
        self,
        handler: Callable[[Update, dict[str, Any]], Awaitable[Any]],
        event: Update,
        data: dict[str, Any],
    ) -> Any:
        try:
            return await handler(event, data)
        except Exception as exc:
            bot_errors_total.inc()
            logger.exception(
                "Unhandled error while processing update (trace=%s chat=%s): %s",
                data.get("trace_id"),
                mask_chat_id(get_chat_id(event)),
                exc,
            )

            # Не пытаемся слать ответ в заведомо несуществующий чат
            if isinstance(exc, TelegramBadRequest) and "chat not found" in str(exc):
                return None

            text = await get_message("errors.generic")

            if isinstance(event.message, Message):
                try:
                    await event.message.answer(text)
                except TelegramBadRequest:
                    logger.debug("Could not deliver error reply")
            elif isinstance(event.callback_query, CallbackQuery):
                try:
                    await event.callback_query.answer(text, show_alert=True)
                except TelegramBadRequest:
                    logger.debug("Could not deliver error reply")

            return None
