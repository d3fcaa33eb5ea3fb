from typing import Literal

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services.auth0.credentials import DEFAULT_DEVICE_FLOW_CLIENT_ID


class Settings(BaseSettings):
    BOT_TOKEN: str
    WEBHOOK_SECRET: str
    HMAC_SECRET: str

    # публичный origin: deep links, callback URL для actions, telegram webhook
    BASE_URL: AnyHttpUrl

    BOT_MODE: Literal["dev", "prod"] = "dev"  # dev = polling, prod = webhook
    APP_HOST: str = "0.0.0.0"  # noqa: S104
    APP_PORT: int = 8080
    PROM_PORT: int = 8001

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    DEVICE_FLOW_CLIENT_ID: str = DEFAULT_DEVICE_FLOW_CLIENT_ID

    # outbound HTTP (tenant management API, Telegram)
    HTTP_TIMEOUT: float = 10.0
    HTTP_MAX_ATTEMPTS: int = 3
    HTTP_RETRY_WAIT: float = 0.1
    HTTP_RETRY_MAX_WAIT: float = 2.0

    ACTION_BUILD_POLL_INTERVAL: float = 1.5
    ACTION_BUILD_TIMEOUT: float = 120.0

    MESSAGE_TTL_MINUTES: int = 5
    BOT_DEFAULT_LANGUAGE: str = "en"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def base_url(self) -> str:
        return str(self.BASE_URL).rstrip("/")


settings = Settings()
