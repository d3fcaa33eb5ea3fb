from __future__ import annotations

import logging
from urllib.parse import urlparse

from aiogram import F, Router
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from ..config import settings
from ..services.message_store import get_message
from ..utils.format import mask_chat_id
from ..utils.links import build_auth_form_url

logger = logging.getLogger(__name__)

router = Router()

# callback_data кнопок, которые ведут сразу в браузерную форму
FORM_AUTH_TYPES = ("tenant_personal", "auth_ephemeral", "auth_client_credentials")


def _language(callback: CallbackQuery) -> str | None:
    return callback.from_user.language_code if callback.from_user else None


def _is_local(url: str) -> bool:
    return (urlparse(url).hostname or "") in ("localhost", "127.0.0.1")


async def build_form_prompt(
    chat_id: int, message_id: int, auth_type: str, language: str | None = None
) -> tuple[str, InlineKeyboardMarkup | None]:
    """Текст и кнопка с подписанной ссылкой на форму авторизации."""
    url = build_auth_form_url(
        settings.base_url,
        chat_id=chat_id,
        message_id=message_id,
        auth_type=auth_type,
        secret=settings.HMAC_SECRET,
    )
    text = await get_message("auth.open_form", language=language)

    # telegram не принимает URL-кнопки на localhost, отдаём ссылку текстом
    if _is_local(url):
        return f"{text}\n\n{url}", None

    keyboard = InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text=await get_message("buttons.complete_auth", language=language), url=url)]
        ]
    )
    return text, keyboard


async def get_private_tenant_keyboard(language: str | None = None) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text=await get_message("buttons.auth_ephemeral", language=language),
                    callback_data="auth_ephemeral",
                )
            ],
            [
                InlineKeyboardButton(
                    text=await get_message("buttons.auth_client_credentials", language=language),
                    callback_data="auth_client_credentials",
                )
            ],
        ]
    )


@router.callback_query(F.data == "tenant_private")
async def on_private_tenant(callback: CallbackQuery) -> None:
    if not isinstance(callback.message, Message):
        await callback.answer()
        return

    language = _language(callback)
    await callback.message.edit_text(
        await get_message("auth.choose_method", language=language),
        reply_markup=await get_private_tenant_keyboard(language),
    )
    await callback.answer()


@router.callback_query(F.data.in_(FORM_AUTH_TYPES))
async def on_form_auth_type(callback: CallbackQuery) -> None:
    if not isinstance(callback.message, Message):
        # сообщение слишком старое, редактировать нечего
        await callback.answer()
        return

    message = callback.message
    chat_id = message.chat.id
    text, keyboard = await build_form_prompt(chat_id, message.message_id, callback.data, _language(callback))

    await message.edit_text(text, reply_markup=keyboard)
    await callback.answer()
    logger.info("Auth form link issued: chat=%s auth_type=%s", mask_chat_id(chat_id), callback.data)
