from __future__ import annotations

import logging

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, Message

from ..services.message_store import get_message

router = Router()
logger = logging.getLogger(__name__)


def _language(message: Message) -> str | None:
    return message.from_user.language_code if message.from_user else None


async def get_tenant_keyboard(language: str | None = None) -> InlineKeyboardMarkup:
    """Выбор типа тенанта: публичный (device flow) или приватный (токен / client credentials)."""
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text=await get_message("buttons.tenant_personal", language=language),
                    callback_data="tenant_personal",
                )
            ],
            [
                InlineKeyboardButton(
                    text=await get_message("buttons.tenant_private", language=language),
                    callback_data="tenant_private",
                )
            ],
        ]
    )


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    language = _language(message)
    keyboard = await get_tenant_keyboard(language)
    await message.answer(await get_message("start.text", language=language), reply_markup=keyboard)


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    language = _language(message)
    keyboard = await get_tenant_keyboard(language)
    await message.answer(await get_message("start.help", language=language), reply_markup=keyboard)
