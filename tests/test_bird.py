import asyncio
import json

import pytest

from grabber.core.errors import ErrorKind, GrabberError
from grabber.ingestion import bird
from grabber.ingestion.bird import BirdClient, classify_cli_failure, parse_records

RECORD = {
    "id": "100",
    "text": "Check this out https://blog.example.com/post",
    "createdAt": "Sun Mar 08 10:00:00 +0000 2026",
    "conversationId": "99",
    "author": {"username": "alice", "name": "Alice"},
    "media": [
        {"type": "photo", "url": "https://pbs.example.com/a.jpg"},
        {"type": "video", "url": "https://pbs.example.com/thumb.jpg", "videoUrl": "https://video.example.com/v.mp4"},
    ],
}


class FakeProcess:
    def __init__(self, stdout="", stderr="", returncode=0):
        self.stdout = stdout.encode()
        self.stderr = stderr.encode()
        self.returncode = returncode

    async def communicate(self):
        return self.stdout, self.stderr


class HangingProcess(FakeProcess):
    def __init__(self):
        super().__init__(returncode=None)
        self.killed = False

    async def communicate(self):
        await asyncio.sleep(10)
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


@pytest.fixture
def cli(monkeypatch):
    calls = []
    responses = {}

    async def fake_exec(*args, **kwargs):
        calls.append(args)
        return responses[args[1]]

    monkeypatch.setattr(bird.asyncio, "create_subprocess_exec", fake_exec)
    return calls, responses


def test_parse_records_maps_fields():
    items = parse_records([RECORD])

    assert len(items) == 1
    item = items[0]
    assert item.author_username == "alice"
    assert item.urls == ["https://blog.example.com/post", "https://video.example.com/v.mp4"]
    assert item.images == ["https://pbs.example.com/a.jpg", "https://pbs.example.com/thumb.jpg"]
    assert item.is_thread is True
    assert item.url == "https://x.com/alice/status/100"


def test_parse_records_drops_malformed_records():
    items = parse_records([RECORD, {"id": "101", "text": "no author"}, "garbage"])

    assert [i.id for i in items] == ["100"]


def test_single_record_payload():
    assert len(parse_records(dict(RECORD, conversationId="100"))) == 1
    assert parse_records(dict(RECORD, conversationId="100"))[0].is_thread is False


@pytest.mark.parametrize("message,kind", [
    ("Error: Rate limit exceeded", ErrorKind.RATE_LIMITED),
    ("HTTP 401 Unauthorized", ErrorKind.CREDENTIALS_EXPIRED),
    ("missing auth cookies", ErrorKind.CREDENTIALS_EXPIRED),
    ("error: unknown command 'bookmarks'", ErrorKind.UNKNOWN),
    ("socket hang up", ErrorKind.NETWORK),
])
def test_classify_cli_failure(message, kind):
    assert classify_cli_failure(message).kind is kind


def test_fetch_batch_passes_limit_and_cookies(cli):
    calls, responses = cli
    responses["bookmarks"] = FakeProcess(stdout=json.dumps([RECORD]))
    client = BirdClient(auth_token="tok", ct0="csrf")

    items = asyncio.run(client.fetch_batch(5))

    assert [i.id for i in items] == ["100"]
    assert calls[0] == ("bird", "bookmarks", "-n", "5", "--json", "--plain", "--auth-token", "tok", "--ct0", "csrf")


def test_fetch_batch_failure_is_classified(cli):
    _, responses = cli
    responses["bookmarks"] = FakeProcess(stderr="401 auth required", returncode=1)

    with pytest.raises(GrabberError) as excinfo:
        asyncio.run(BirdClient().fetch_batch(5))

    assert excinfo.value.kind is ErrorKind.CREDENTIALS_EXPIRED


def test_fetch_batch_invalid_json(cli):
    _, responses = cli
    responses["bookmarks"] = FakeProcess(stdout="not json")

    with pytest.raises(GrabberError) as excinfo:
        asyncio.run(BirdClient().fetch_batch(5))

    assert excinfo.value.kind is ErrorKind.NETWORK


def test_fetch_thread_failure_returns_empty(cli):
    _, responses = cli
    responses["thread"] = FakeProcess(stderr="boom", returncode=1)

    assert asyncio.run(BirdClient().fetch_thread("100")) == []


def test_check_credentials(cli):
    _, responses = cli
    responses["whoami"] = FakeProcess(stdout="@alice (Alice)\n")
    assert asyncio.run(BirdClient().check_credentials()).identity == "alice"

    responses["whoami"] = FakeProcess(stderr="cookie expired", returncode=1)
    assert asyncio.run(BirdClient().check_credentials()).valid is False


def test_hung_cli_is_killed(cli):
    _, responses = cli
    process = HangingProcess()
    responses["bookmarks"] = process

    with pytest.raises(GrabberError) as excinfo:
        asyncio.run(BirdClient(timeout=0.01).fetch_batch(5))

    assert process.killed is True
    assert excinfo.value.kind is ErrorKind.NETWORK
    assert "timed out" in str(excinfo.value)
