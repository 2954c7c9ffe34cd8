"""Deliver status messages to the people running the downloader."""

from __future__ import annotations

from typing import Iterable, Protocol

from telegram import Bot
from telegram.error import TelegramError

from log_utils import get_logger

log = get_logger().bind(module=__name__)


class Notifier(Protocol):
    async def notify(self, text: str) -> None: ...


class LogNotifier:
    """Fallback used when no bot token is configured."""

    async def notify(self, text: str) -> None:
        log.info("Notification", text=text)


class TelegramNotifier:
    """Send ``text`` to every chat in ``chat_ids`` through the Bot API."""

    def __init__(self, token: str, chat_ids: Iterable[int | str], bot: Bot | None = None):
        self.bot = bot or Bot(token)
        self.chat_ids = list(chat_ids)

    async def notify(self, text: str) -> None:
        for chat_id in self.chat_ids:
            try:
                await self.bot.send_message(chat_id=chat_id, text=text[:4000])
            except TelegramError:
                log.exception("Failed to notify", chat=chat_id)


def build_notifier(cfg) -> Notifier:
    """Return a Telegram notifier when ``TG_TOKEN`` and recipients are set."""
    token = getattr(cfg, "TG_TOKEN", None)
    chat_ids = getattr(cfg, "NOTIFY_CHAT_IDS", [])
    if token and chat_ids:
        return TelegramNotifier(token, chat_ids)
    log.debug("No notification target configured")
    return LogNotifier()
