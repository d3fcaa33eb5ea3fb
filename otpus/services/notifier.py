"""Delivery of bot messages outside of update handlers (web endpoints, background tasks)."""

from __future__ import annotations

import asyncio
import logging

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import InlineKeyboardMarkup, LinkPreviewOptions, Message

from ..utils.format import mask_chat_id
from .retry import RetryConfig, execute_with_retry

logger = logging.getLogger(__name__)


class ChatNotifier:
    """
    send/edit/delete over the Bot API.

    Failures are logged and reported through the return value, never raised:
    whatever the caller already did on the tenant stays done. Messages are
    deleted ``message_ttl`` seconds after they were sent or edited (0 keeps them),
    so OTP codes and tenant details don't linger in the chat.
    """

    def __init__(self, bot: Bot, *, retry: RetryConfig | None = None, message_ttl: float = 0) -> None:
        self.bot = bot
        self._retry = retry or RetryConfig()
        self._message_ttl = message_ttl
        self._cleanup_tasks: set[asyncio.Task[None]] = set()

    async def send(self, chat_id: int, text: str, keyboard: InlineKeyboardMarkup | None = None) -> Message | None:
        try:
            message = await execute_with_retry(
                lambda: self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    reply_markup=keyboard,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                ),
                self._retry,
            )
        except TelegramAPIError as e:
            logger.error("Failed to send message to chat %s: %s", mask_chat_id(chat_id), e)
            return None

        self._schedule_delete(chat_id, message.message_id)
        return message

    async def edit(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        keyboard: InlineKeyboardMarkup | None = None,
    ) -> bool:
        try:
            await execute_with_retry(
                lambda: self.bot.edit_message_text(
                    chat_id=chat_id,
                    message_id=message_id,
                    text=text,
                    reply_markup=keyboard,
                    link_preview_options=LinkPreviewOptions(is_disabled=True),
                ),
                self._retry,
            )
        except TelegramAPIError as e:
            logger.warning("Failed to edit message %s in chat %s: %s", message_id, mask_chat_id(chat_id), e)
            return False

        self._schedule_delete(chat_id, message_id)
        return True

    async def edit_or_send(
        self,
        chat_id: int,
        message_id: int | None,
        text: str,
        keyboard: InlineKeyboardMarkup | None = None,
    ) -> bool:
        """Edit the bot's prompt in place; fall back to a new message if it is gone."""
        if message_id is not None and await self.edit(chat_id, message_id, text, keyboard):
            return True
        return await self.send(chat_id, text, keyboard) is not None

    async def delete(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
        except TelegramAPIError as e:
            logger.debug("Failed to delete message %s in chat %s: %s", message_id, mask_chat_id(chat_id), e)
            return False
        logger.debug("Message %s deleted in chat %s", message_id, mask_chat_id(chat_id))
        return True

    def _schedule_delete(self, chat_id: int, message_id: int) -> None:
        if self._message_ttl <= 0:
            return
        task = asyncio.create_task(self._delete_later(chat_id, message_id))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _delete_later(self, chat_id: int, message_id: int) -> None:
        await asyncio.sleep(self._message_ttl)
        await self.delete(chat_id, message_id)

    async def close(self) -> None:
        """Drop pending deletions; used on shutdown."""
        for task in list(self._cleanup_tasks):
            task.cancel()
        await asyncio.gather(*self._cleanup_tasks, return_exceptions=True)
        self._cleanup_tasks.clear()
