import sys
import pathlib

# Ensure project root is importable in tests
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from config import Settings
from llm_client import CompletionError
from server import ChatServer
from storage import ConversationStore


class FakeCompletion:
    """Stands in for CompletionClient; records every window it is asked to complete."""

    def __init__(self, reply="Hello from Grok", error=None):
        self.reply = reply
        self.error = error
        self.windows = []

    def complete(self, window):
        self.windows.append(list(window))
        if self.error is not None:
            raise self.error
        return self.reply

    def close(self):
        pass


@pytest.fixture
def settings(tmp_path):
    return Settings(database_path=str(tmp_path / "mcp_server.db"))


@pytest.fixture
def store(settings):
    st = ConversationStore(settings.database_path)
    yield st
    st.close()


@pytest.fixture
def make_server(settings, store):
    created = []

    def _make(completion=None, storage=None):
        srv = ChatServer(settings=settings, storage=storage or store, completion=completion)
        created.append(srv)
        return srv

    yield _make
    for srv in created:
        srv.cleanup.stop()


@pytest.fixture
def fake_completion():
    return FakeCompletion


@pytest.fixture
def failing_completion():
    return FakeCompletion(error=CompletionError("API error: upstream unavailable"))
