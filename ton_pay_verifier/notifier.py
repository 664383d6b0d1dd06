from __future__ import annotations

from typing import Protocol

from telegram import Bot
from telegram.error import TelegramError

from common.errors import NotificationError
from common.logger import Logger


class Notifier(Protocol):
    async def send(self, target: int | str, text: str) -> None:
        ...

    async def aclose(self) -> None:
        ...


class TelegramNotifier:
    def __init__(self, token: str) -> None:
        self._bot = Bot(token=token)
        self._initialized = False

    async def send(self, target: int | str, text: str) -> None:
        try:
            if not self._initialized:
                await self._bot.initialize()
                self._initialized = True
            await self._bot.send_message(
                chat_id=target,
                text=text,
                disable_web_page_preview=True,
            )
        except TelegramError as e:
            raise NotificationError(f"telegram send to {target} failed: {e}") from e

    async def aclose(self) -> None:
        if self._initialized:
            await self._bot.shutdown()
            self._initialized = False


class LogNotifier:
    """Used when no bot token is configured."""

    async def send(self, target: int | str, text: str) -> None:
        Logger.info("Notification -> %s: %s", target, text.replace("\n", " | "))

    async def aclose(self) -> None:
        return None
