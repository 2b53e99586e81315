import json
from types import SimpleNamespace

import pytest

from core.context_manager import SYSTEM_PROMPT
from core.fallback import FALLBACK_RESPONSES
from llm_client import CompletionClient
from storage import StorageError


def _call(srv, name, arguments):
    res = srv.handle_message(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": name, "arguments": arguments}}
    )
    if "error" in res:
        return res
    return json.loads(res["result"]["content"][0]["text"])


class BrokenStore:
    """Store double whose writes and reads can be made to fail independently."""

    def __init__(self, fail_save=False, fail_history=False, fail_assistant_save=False):
        self.fail_save = fail_save
        self.fail_history = fail_history
        self.fail_assistant_save = fail_assistant_save
        self.saved = []

    def save_message(self, user_id, content, role):
        if self.fail_save or (role == "assistant" and self.fail_assistant_save):
            raise StorageError("disk I/O error")
        self.saved.append((user_id, content, role))
        return SimpleNamespace(id=len(self.saved))

    def get_chat_history(self, user_id, limit=20):
        if self.fail_history:
            raise StorageError("database is locked")
        return []

    def close(self):
        pass


def test_chat_without_backend_uses_fallback(make_server, store):
    res = _call(make_server(), "chat", {"user_id": "u1", "message": "hi"})
    assert res == {"response": FALLBACK_RESPONSES[4], "user_id": "u1"}

    history = store.get_chat_history("u1")
    assert [(m.role, m.content) for m in history] == [("user", "hi"), ("assistant", FALLBACK_RESPONSES[4])]


def test_chat_with_backend(make_server, store, fake_completion):
    completion = fake_completion("Hello from Grok")
    srv = make_server(completion=completion)
    res = _call(srv, "chat", {"user_id": "u1", "message": "Hello test"})
    assert res == {"response": "Hello from Grok", "user_id": "u1"}

    window = completion.windows[0]
    assert window == [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "Hello test"},
    ]
    assert [m.content for m in store.get_chat_history("u1")] == ["Hello test", "Hello from Grok"]


def test_chat_window_carries_prior_turns_once(make_server, fake_completion):
    completion = fake_completion("ok")
    srv = make_server(completion=completion)
    _call(srv, "chat", {"user_id": "u1", "message": "first"})
    _call(srv, "chat", {"user_id": "u1", "message": "second"})

    window = completion.windows[1]
    assert [t["content"] for t in window[1:]] == ["first", "ok", "second"]
    # The new message is not duplicated from storage
    assert sum(1 for t in window if t["content"] == "second") == 1


def test_chat_window_stays_bounded(make_server, store, fake_completion):
    for i in range(15):
        store.save_message("u1", f"old{i}", "user" if i % 2 == 0 else "assistant")
    completion = fake_completion("ok")
    _call(make_server(completion=completion), "chat", {"user_id": "u1", "message": "latest"})

    window = completion.windows[0]
    assert len(window) == 11
    assert window[-1] == {"role": "user", "content": "latest"}
    assert window[-2]["content"] == "old14"


def test_chat_backend_failure_falls_back(make_server, store, failing_completion):
    res = _call(make_server(completion=failing_completion), "chat", {"user_id": "u1", "message": "hi"})
    assert res["response"] == FALLBACK_RESPONSES[4]
    assert store.get_user_message_count("u1") == 2


def test_chat_user_save_failure_is_tool_error(make_server, fake_completion):
    completion = fake_completion()
    srv = make_server(completion=completion, storage=BrokenStore(fail_save=True))
    res = _call(srv, "chat", {"user_id": "u1", "message": "hi"})
    assert res["error"]["code"] == -32603
    assert "disk I/O error" in res["error"]["message"]
    assert completion.windows == []


def test_chat_history_failure_still_replies(make_server, fake_completion):
    completion = fake_completion("still here")
    store = BrokenStore(fail_history=True)
    res = _call(make_server(completion=completion, storage=store), "chat", {"user_id": "u1", "message": "hi"})
    assert res["response"] == "still here"
    assert len(completion.windows[0]) == 2
    assert store.saved[-1] == ("u1", "still here", "assistant")


def test_chat_assistant_save_failure_still_replies(make_server):
    store = BrokenStore(fail_assistant_save=True)
    res = _call(make_server(storage=store), "chat", {"user_id": "u1", "message": "hi"})
    assert res["response"] == FALLBACK_RESPONSES[4]
    assert store.saved == [("u1", "hi", "user")]


def test_history_returns_newest_oldest_first(make_server, store):
    for i in range(5):
        store.save_message("u1", f"m{i}", "user")
    res = _call(make_server(), "history", {"user_id": "u1", "limit": 2})
    assert res["user_id"] == "u1"
    assert [m["content"] for m in res["messages"]] == ["m3", "m4"]
    msg = res["messages"][0]
    assert set(msg) == {"id", "user_id", "content", "role", "created_at"}
    assert msg["created_at"].endswith("Z")


def test_history_limit_coercion(make_server, store):
    for i in range(25):
        store.save_message("u1", f"m{i}", "user")
    srv = make_server()
    assert len(_call(srv, "history", {"user_id": "u1"})["messages"]) == 20
    assert len(_call(srv, "history", {"user_id": "u1", "limit": 3.9})["messages"]) == 3
    assert len(_call(srv, "history", {"user_id": "u1", "limit": "5"})["messages"]) == 20
    assert len(_call(srv, "history", {"user_id": "u1", "limit": 0})["messages"]) == 20
    assert len(_call(srv, "history", {"user_id": "u1", "limit": True})["messages"]) == 20
    # Huge limits are clamped to what SQLite accepts
    assert len(_call(srv, "history", {"user_id": "u1", "limit": 1e19})["messages"]) == 25
    assert len(_call(srv, "history", {"user_id": "u1", "limit": 10**30})["messages"]) == 25


def test_history_empty_user(make_server):
    assert _call(make_server(), "history", {"user_id": "nobody"}) == {"messages": [], "user_id": "nobody"}


def test_history_storage_failure(make_server):
    res = _call(make_server(storage=BrokenStore(fail_history=True)), "history", {"user_id": "u1"})
    assert res["error"] == {"code": -32603, "message": "failed to get chat history: database is locked"}


class _CannedSession:
    """requests.Session stand-in that answers every POST with a 200 and `payload`."""

    def __init__(self, payload):
        self.payload = payload

    def post(self, url, json=None, headers=None, timeout=None):
        return SimpleNamespace(status_code=200, json=lambda: self.payload, text="")

    def close(self):
        pass


def _client_returning(payload):
    return CompletionClient("key", "https://api.x.ai/v1", "grok-beta", session=_CannedSession(payload))


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": {"a": 1}},
        {"choices": 5},
        {"choices": [{"message": {"content": ""}}]},
        {"choices": [{"message": "hello"}]},
    ],
)
def test_chat_unusable_provider_reply_falls_back(make_server, store, payload):
    res = _call(make_server(completion=_client_returning(payload)), "chat", {"user_id": "u1", "message": "hi"})
    assert res == {"response": FALLBACK_RESPONSES[4], "user_id": "u1"}
    assert [m.role for m in store.get_chat_history("u1")] == ["user", "assistant"]


def test_chat_unexpected_completion_error_falls_back(make_server, store, fake_completion):
    completion = fake_completion(error=KeyError(0))
    res = _call(make_server(completion=completion), "chat", {"user_id": "u1", "message": "hi"})
    assert res["response"] == FALLBACK_RESPONSES[4]
    assert store.get_user_message_count("u1") == 2
