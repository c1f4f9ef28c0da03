"""
Module to contain base classes for the outbound sinks: alert channels and the destination store
"""
import asyncio
import html
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from grabber.core.errors import ErrorKind, GrabberError
from grabber.core.schemas import AnalysisResult
from grabber.ingestion.base import Item

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096
DIGEST_CHUNK_LENGTH = 4000

ERROR_EMOJI = {
    ErrorKind.CREDENTIALS_EXPIRED: "🔑",
    ErrorKind.RATE_LIMITED: "⏱️",
    ErrorKind.NETWORK: "🌐",
    ErrorKind.PARSE: "⚠️",
    ErrorKind.DESTINATION_WRITE_FAILED: "📝",
    ErrorKind.NOTIFIER: "💬",
}


def chunk_message(text: str, max_length: int = DIGEST_CHUNK_LENGTH) -> List[str]:
    """
    Split text into chunks of at most `max_length` characters on line boundaries.
    A single line longer than `max_length` is split hard.
    """
    chunks: List[str] = []
    current = ""

    for line in text.split("\n"):
        while len(line) > max_length:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:max_length])
            line = line[max_length:]

        if current and len(current) + len(line) + 1 > max_length:
            chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line

    if current:
        chunks.append(current)
    return chunks


class Notifier(ABC):
    """
    Base interface for alert channels.
    Sends are serialized and spaced by at least `min_interval` seconds.
    """

    name: str
    max_length: int = MAX_MESSAGE_LENGTH

    def __init__(self, min_interval: float = 1.0):
        self.min_interval = min_interval
        self._last_sent_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @abstractmethod
    async def _deliver(self, text: str, *, markdown: bool) -> None:
        """
        Push one message to the channel.
        Must raise exceptions on failure (handled upstream).
        """
        raise NotImplementedError

    async def send(self, text: str, *, markdown: bool = False) -> None:
        async with self._lock:
            if self._last_sent_at is not None:
                wait = self.min_interval - (time.monotonic() - self._last_sent_at)
                if wait > 0:
                    await asyncio.sleep(wait)
            try:
                await self._deliver(text[: self.max_length], markdown=markdown)
            finally:
                self._last_sent_at = time.monotonic()

    async def notify_error(self, error: GrabberError, item_id: Optional[str] = None) -> None:
        emoji = ERROR_EMOJI.get(error.kind, "❌")
        status = "(will retry)" if error.retryable else "(manual action needed)"
        lines = [
            f"{emoji} <b>Grabber Error</b>",
            "",
            f"<b>Type:</b> {error.kind.value}",
        ]
        if item_id:
            lines.append(f"<b>Item:</b> {html.escape(item_id)}")
        lines += [
            f"<b>Message:</b> {html.escape(error.message)}",
            f"<b>Status:</b> {status}",
        ]
        await self.send("\n".join(lines))

    async def notify_credentials_expired(self) -> None:
        await self.send(
            "🔑 <b>X Credentials Expired</b>\n\n"
            "The session cookies are no longer valid. Please update them:\n"
            "1. Log into X in the browser\n"
            "2. Export fresh cookies and restart the grabber\n\n"
            "Processing is paused until credentials are restored."
        )

    async def send_digest(self, digest: str) -> None:
        for chunk in chunk_message(digest, DIGEST_CHUNK_LENGTH):
            await self.send(chunk, markdown=True)


class DestinationStore(ABC):
    """
    Human-facing mirror of processed items (write-only for the pipeline).
    """

    name: str

    @abstractmethod
    async def exists(self, item_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def create(self, item: Item, analysis: AnalysisResult) -> str:
        """
        Create the record and return its reference.
        """
        raise NotImplementedError
