from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..config import settings

logger = logging.getLogger(__name__)


class _SafeFormatDict(dict[str, Any]):
    """Сохраняет неизвестные плейсхолдеры нетронутыми при форматировании."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _normalize_language(language: str | None) -> str | None:
    # telegram шлёт language_code вида "en-US"
    if not language:
        return None
    return language.split("-")[0].lower()


class MessageStore:
    """Шаблоны сообщений бота: JSON seed, загруженный в память один раз."""

    def __init__(self, seed_path: Path, default_language: str = "en") -> None:
        self.seed_path = seed_path
        self.default_language = default_language
        self._cache: dict[tuple[str, str], str] = {}
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return

        with self.seed_path.open("r", encoding="utf-8") as fp:
            seed_data = json.load(fp)

        for item in seed_data:
            key = item.get("key")
            language = item.get("language", self.default_language)
            content = item.get("content")

            if not key or content is None:
                logger.warning("Skipping invalid seed row: %s", item)
                continue

            self._cache[(key, language)] = content

        self._loaded = True
        logger.info("Message store loaded from %s (%d records)", self.seed_path.name, len(self._cache))

    async def get_message(self, key: str, *, language: str | None = None, variables: dict[str, Any] | None = None) -> str:
        """Достаёт сообщение по ключу/языку и форматирует плейсхолдеры."""
        self.load()

        lang = _normalize_language(language) or self.default_language
        content = self._cache.get((key, lang))

        if content is None and lang != self.default_language:
            content = self._cache.get((key, self.default_language))

        if content is None:
            logger.warning("Message '%s' not found for language '%s'", key, lang)
            return f"[{key}]"

        if variables:
            return content.format_map(_SafeFormatDict(variables))

        return content


SEED_PATH = Path(__file__).resolve().parents[1] / "data" / "messages.json"
message_store = MessageStore(seed_path=SEED_PATH, default_language=settings.BOT_DEFAULT_LANGUAGE)


async def get_message(key: str, *, language: str | None = None, variables: dict[str, Any] | None = None) -> str:
    """Шорткат для получения сообщения из глобального стора."""
    return await message_store.get_message(key, language=language, variables=variables)
