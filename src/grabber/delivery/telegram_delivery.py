import logging
from typing import Optional

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, RetryAfter, TelegramError

from grabber.core.errors import ErrorKind, GrabberError
from grabber.delivery.base import Notifier

logger = logging.getLogger(__name__)


class TelegramNotifier(Notifier):
    name = "telegram"

    def __init__(self, bot_token: str, chat_id: str, min_interval: float = 1.0):
        super().__init__(min_interval=min_interval)
        self.bot = Bot(token=bot_token)
        self.chat_id = chat_id

    async def _deliver(self, text: str, *, markdown: bool) -> None:
        try:
            try:
                await self._send_message(text, ParseMode.MARKDOWN if markdown else ParseMode.HTML)
            except BadRequest as e:
                if not markdown:
                    raise
                # e.g. an unbalanced _ in a tag or summary
                logger.warning(f"Telegram rejected Markdown ({e}), resending as plain text")
                await self._send_message(text, None)
        except RetryAfter as e:
            raise GrabberError(f"Telegram rate limit: {e}", ErrorKind.RATE_LIMITED) from e
        except TelegramError as e:
            raise GrabberError(f"Telegram send failed: {e}", ErrorKind.NOTIFIER, retryable=True) from e

    async def _send_message(self, text: str, parse_mode: Optional[str]) -> None:
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            parse_mode=parse_mode,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
        )
