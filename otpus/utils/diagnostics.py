"""Диагностические утилиты для проверки конфигурации."""

import logging
from urllib.parse import urlparse

from ..config import settings
from .format import mask_secret
from .links import build_otp_callback_url, build_webhook_url

logger = logging.getLogger(__name__)


def check_base_url(url: str | None = None) -> tuple[bool, str]:
    """
    Проверяет, что BASE_URL доступен снаружи: Telegram и actions тенанта ходят на него.

    Returns:
        (is_valid, error_message)
    """
    origin = url if url is not None else settings.base_url
    parsed = urlparse(origin)

    if parsed.scheme not in ("http", "https"):
        return False, f"BASE_URL must use http:// or https://, got {parsed.scheme or 'no scheme'}"

    hostname = parsed.hostname or ""
    if not hostname:
        return False, "BASE_URL must contain a hostname"

    if hostname in ("localhost", "127.0.0.1", "0.0.0.0"):  # noqa: S104
        return False, f"BASE_URL points to {hostname}; tenant actions and Telegram will not reach it"

    if parsed.scheme != "https":
        return False, "BASE_URL is not https; Telegram only delivers webhooks over https"

    return True, "OK"


def print_config_diagnostics() -> None:
    """Выводит диагностическую информацию о конфигурации."""
    logger.info("=== Configuration diagnostics ===")
    logger.info("BOT_MODE: %s", settings.BOT_MODE)

    is_valid, message = check_base_url()
    logger.info("BASE_URL: %s", settings.base_url)
    if is_valid:
        logger.info("  ✅ %s", message)
    else:
        logger.warning("  ❌ %s", message)

    logger.info("Webhook URL: %s", build_webhook_url(settings.base_url))
    logger.info("OTP callback URL: %s", build_otp_callback_url(settings.base_url))
    logger.info("HMAC_SECRET: %s", mask_secret(settings.HMAC_SECRET, visible=0))
    logger.info("Device flow client: %s", settings.DEVICE_FLOW_CLIENT_ID)
