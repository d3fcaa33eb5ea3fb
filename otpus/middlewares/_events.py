from __future__ import annotations

from aiogram.types import Update


def get_chat_id(event: Update) -> int | None:
    if event.message:
        return event.message.chat.id
    if event.callback_query and event.callback_query.message:
        return event.callback_query.message.chat.id
    return None


def get_update_kind(event: Update) -> str:
    if event.message:
        return "message"
    if event.callback_query:
        return "callback_query"
    if event.inline_query:
        return "inline_query"
    return "update"
