"""Конфигурация pytest для тестов бота."""

import os

import pytest

# Минимальные env, чтобы Settings() собрался при импорте otpus.config
os.environ.setdefault("BOT_TOKEN", "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw")
os.environ.setdefault("WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("HMAC_SECRET", "test_hmac_secret")
os.environ.setdefault("BASE_URL", "https://bot.example.com")
os.environ.setdefault("MESSAGE_TTL_MINUTES", "0")


def pytest_configure(config):
    """Регистрирует кастомные маркеры pytest."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


class FakeClock:
    """Монотонные часы, которые двигает сам тест (или fake sleep)."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
