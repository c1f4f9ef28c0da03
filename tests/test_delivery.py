import asyncio
import time

import pytest

from grabber.core.errors import ErrorKind, GrabberError
from grabber.delivery.base import chunk_message
from grabber.delivery.file_delivery import FileNotifier
from grabber.delivery.telegram_delivery import TelegramNotifier

from fakes import RecordingNotifier


def test_chunk_message_respects_line_boundaries():
    text = "\n".join(["a" * 30] * 10)

    chunks = chunk_message(text, max_length=100)

    assert all(len(c) <= 100 for c in chunks)
    assert all(line == "a" * 30 for c in chunks for line in c.split("\n"))
    assert "\n".join(chunks) == text


def test_chunk_message_splits_overlong_lines():
    chunks = chunk_message("short\n" + "b" * 250, max_length=100)

    assert chunks == ["short", "b" * 100, "b" * 100, "b" * 50]


def test_short_message_is_one_chunk():
    assert chunk_message("hello") == ["hello"]


def test_messages_are_capped():
    notifier = RecordingNotifier()

    asyncio.run(notifier.send("x" * 5000))

    assert len(notifier.messages[0]) == 4096


def test_sends_are_spaced():
    notifier = RecordingNotifier(min_interval=0.05)

    async def burst():
        await asyncio.gather(*(notifier.send(str(i)) for i in range(3)))

    start = time.monotonic()
    asyncio.run(burst())

    assert time.monotonic() - start >= 0.09
    assert sorted(notifier.messages) == ["0", "1", "2"]


def test_error_alert_is_escaped():
    notifier = RecordingNotifier()
    error = GrabberError("bad <html> & stuff", ErrorKind.PARSE)

    asyncio.run(notifier.notify_error(error, item_id="42"))

    message = notifier.messages[0]
    assert "⚠️" in message
    assert "bad &lt;html&gt; &amp; stuff" in message
    assert "<b>Item:</b> 42" in message
    assert "(manual action needed)" in message


def test_file_notifier_appends(tmp_path):
    notifier = FileNotifier(output_dir=str(tmp_path))

    asyncio.run(notifier.send("first"))
    asyncio.run(notifier.send("second"))

    content = (tmp_path / "notifications.md").read_text(encoding="utf-8")
    assert content.index("first") < content.index("second")


class FakeBot:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def send_message(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append(kwargs)


def test_telegram_notifier_sends_to_chat():
    notifier = TelegramNotifier("123:abc", "chat-1", min_interval=0)
    notifier.bot = FakeBot()

    asyncio.run(notifier.send_digest("# Digest"))

    call = notifier.bot.calls[0]
    assert call["chat_id"] == "chat-1"
    assert call["text"] == "# Digest"
    assert call["parse_mode"] == "Markdown"


def test_telegram_failures_are_classified():
    from telegram.error import NetworkError

    notifier = TelegramNotifier("123:abc", "chat-1", min_interval=0)
    notifier.bot = FakeBot(error=NetworkError("connection reset"))

    with pytest.raises(GrabberError) as excinfo:
        asyncio.run(notifier.send("hi"))

    assert excinfo.value.kind is ErrorKind.NOTIFIER


class MarkdownRejectingBot(FakeBot):
    async def send_message(self, **kwargs):
        if kwargs["parse_mode"] == "Markdown" and "_" in kwargs["text"]:
            from telegram.error import BadRequest

            raise BadRequest("Can't parse entities: can't find end of the entity starting at byte offset 120")
        self.calls.append(kwargs)


def test_digest_rejected_as_markdown_is_resent_as_plain_text(ledger, agent):
    from datetime import timedelta

    from grabber.core.entities import ProcessingStatus
    from grabber.services.digest import DigestReporter
    from grabber.services.ledger import utc_now

    asyncio.run(ledger.commit(
        "1",
        ProcessingStatus.COMPLETED,
        "research",
        None,
        {"analysis": {"tags": ["machine_learning"], "relevance_score": 9, "summary": "New optimizer"}},
        processed_at=utc_now() - timedelta(hours=1),
    ))
    agent.digest_error = RuntimeError("model offline")
    notifier = TelegramNotifier("123:abc", "chat-1", min_interval=0)
    notifier.bot = MarkdownRejectingBot()

    assert asyncio.run(DigestReporter(ledger, agent, notifier).send_weekly_digest()) is True

    call = notifier.bot.calls[0]
    assert call["parse_mode"] is None
    assert "machine_learning (1)" in call["text"]


def test_rejected_html_is_not_resent():
    from telegram.error import BadRequest

    notifier = TelegramNotifier("123:abc", "chat-1", min_interval=0)
    notifier.bot = FakeBot(error=BadRequest("Can't parse entities"))

    with pytest.raises(GrabberError) as excinfo:
        asyncio.run(notifier.notify_error(GrabberError("boom", ErrorKind.UNKNOWN)))

    assert excinfo.value.kind is ErrorKind.NOTIFIER
