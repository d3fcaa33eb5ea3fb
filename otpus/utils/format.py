from __future__ import annotations

import json
from typing import TYPE_CHECKING

from aiogram.utils.text_decorations import html_decoration

if TYPE_CHECKING:
    from ..schemas.otp import OTPEvent

# telegram режет сообщения длиннее 4096 символов
_MAX_DETAILS_LEN = 3000


def mask_hex_id(value: int | str | None) -> str:
    """
    Превращает число/hex-строку в вид 0x1234…abcd.
    Используем для маскировки chat_id и прочих идентификаторов.
    """
    if value is None:
        return "unknown"

    sign = ""
    if isinstance(value, int):
        # id групп в telegram отрицательные
        sign = "-" if value < 0 else ""
        hex_str = f"{abs(value):x}"
    else:
        hex_str = value.lower().removeprefix("0x")

    if len(hex_str) <= 8:
        return f"{sign}0x{hex_str}"

    return f"{sign}0x{hex_str[:4]}…{hex_str[-4:]}"


def mask_chat_id(chat_id: int | str | None) -> str:
    if isinstance(chat_id, str):
        try:
            chat_id = int(chat_id)
        except ValueError:
            return "invalid"
    return mask_hex_id(chat_id)


def mask_secret(value: str | None, visible: int = 4) -> str:
    """abcdef123456 -> abcd…(12)"""
    if not value:
        return "empty"
    if len(value) <= visible * 2:
        return "***"
    return f"{value[:visible]}…({len(value)})"


def format_otp_message(event: OTPEvent) -> str:
    """HTML-сообщение с OTP: ключевые поля сверху, полный payload в свёрнутой цитате."""
    q = html_decoration.quote
    details = json.dumps(event.model_dump(), indent=2, ensure_ascii=False)
    if len(details) > _MAX_DETAILS_LEN:
        details = details[:_MAX_DETAILS_LEN] + "\n…"
    return (
        f"Domain: <code>{q(event.domain)}</code>\n\n"
        f"Recipient: <code>{q(event.phone_number)}</code>\n"
        f"Code: <b><code>{q(event.code)}</code></b>\n"
        f"Message: <code>{q(event.message)}</code>\n\n"
        f"<blockquote expandable>\n<b>All details:</b>\n\n{q(details)}</blockquote>"
    )
