import asyncio

import pytest

from grabber.services.ledger import Ledger

from fakes import FakeAgent, FakeDestination, FakeSource, RecordingNotifier


@pytest.fixture
def ledger(tmp_path):
    ledger = Ledger(str(tmp_path / "ledger.db"))
    asyncio.run(ledger.init_tables())
    return ledger


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def destination():
    return FakeDestination()
