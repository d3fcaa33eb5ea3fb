"""Утилиты для сборки публичных URL бота."""

from urllib.parse import urlencode

from ..security.hmac import sign

WEBHOOK_PATH = "/bot/updates"
AUTH_FORM_PATH = "/bot/auth-form"
OTP_CALLBACK_PATH = "/auth0/OTPs"


def build_webhook_url(origin: str) -> str:
    """URL, на который Telegram шлёт апдейты (секрет уходит заголовком, не в пути)."""
    return f"{str(origin).rstrip('/')}{WEBHOOK_PATH}"


def build_otp_callback_url(origin: str) -> str:
    """URL, на который actions тенанта присылают OTP."""
    return f"{str(origin).rstrip('/')}{OTP_CALLBACK_PATH}"


def build_auth_form_url(origin: str, *, chat_id: int, message_id: int, auth_type: str, secret: str) -> str:
    """Подписанная deep link на форму авторизации для конкретного чата и сообщения."""
    query = urlencode(
        {
            "chat_id": chat_id,
            "message_id": message_id,
            "signature": sign(str(chat_id), secret),
            "auth_type": auth_type,
        }
    )
    return f"{str(origin).rstrip('/')}{AUTH_FORM_PATH}?{query}"
