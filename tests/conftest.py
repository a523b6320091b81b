"""Pytest fixtures."""

import pytest
from fastapi.testclient import TestClient

import server
from pingo.mailer import Mailer
from pingo.store import KVStore

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    @property
    def ms(self) -> int:
        return int(self.now * 1000)


class RecordingMailer(Mailer):
    """Keeps messages instead of sending them."""

    def __init__(self, succeed: bool = True):
        super().__init__(api_key="")
        self.succeed = succeed
        self.sent = []

    def send(self, to_email, subject, html_content):
        self.sent.append({"to": to_email, "subject": subject, "html": html_content})
        return self.succeed


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """Store whose expiry follows the fake clock."""
    return KVStore(str(tmp_path / "pingo.db"), clock=clock)


@pytest.fixture
def live_store(tmp_path):
    """Store on wall-clock time, for requests that stamp real timestamps."""
    return KVStore(str(tmp_path / "live.db"))


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(live_store, mailer):
    """Test client with overridden store and mailer."""
    server.app.dependency_overrides[server.get_store] = lambda: live_store
    server.app.dependency_overrides[server.get_mailer] = lambda: mailer
    with TestClient(server.app) as c:
        yield c
    server.app.dependency_overrides.clear()
