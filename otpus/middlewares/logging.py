from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from aiogram import BaseMiddleware
from aiogram.types import Update

from ..metrics import bot_updates_total
from ..utils.format import mask_chat_id
from ._events import get_chat_id, get_update_kind

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[Update, dict[str, Any]], Awaitable[Any]],
        event: Update,
        data: dict[str, Any],
    ) -> Any:
        trace_id = uuid.uuid4().hex[:8]
        data["trace_id"] = trace_id

        masked_chat = mask_chat_id(get_chat_id(event))
        kind = get_update_kind(event)
        bot_updates_total.inc()

        logger.info("trace=%s kind=%s chat=%s", trace_id, kind, masked_chat)

        started = time.perf_counter()
        try:
            return await handler(event, data)
        finally:
            logger.debug("trace=%s handled in %.3fs", trace_id, time.perf_counter() - started)
