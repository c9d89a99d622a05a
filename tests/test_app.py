"""HTTP tests for the ctx-proxy app.

The upstream is a mock ASGI app reached through httpx.ASGITransport, so no
real network is needed. The app's httpx client is swapped after startup.
"""
import json
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from ctxproxy.app import app, get_context_builder
from ctxproxy.auth import require_api_key
from ctxproxy.context_builder import ContextBuilder
from mock_upstream import mock_app, mock_state, reset_mock_state

TOOL_HISTORY_REQUEST = {
    "model": "gpt-4o",
    "messages": [
        {"role": "system", "content": "You are helpful."},
        {"role": "user", "content": "Run ls"},
        {"role": "assistant", "content": "", "tool_calls": [
            {"id": "tc1", "type": "function", "function": {"name": "exec", "arguments": '{"cmd":"ls"}'}},
            {"id": "tc2", "type": "function", "function": {"name": "exec", "arguments": '{"cmd":"pwd"}'}},
        ]},
        {"role": "tool", "content": "file1.txt", "tool_call_id": "tc1"},
        {"role": "user", "content": "and now?"},
    ],
}


def _upstream_client(transport=None) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport or httpx.ASGITransport(app=mock_app),
                             base_url="http://mock-upstream")


@pytest.fixture
def client():
    reset_mock_state()
    with TestClient(app) as c:
        app.state.client = _upstream_client()
        yield c


@pytest.fixture(autouse=True)
def mock_auth():
    app.dependency_overrides[require_api_key] = lambda: {"key": "sk-test", "name": "Test User"}
    yield
    app.dependency_overrides = {}


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "upstream" in data
        assert "workspace" in data


class TestSanitizeRoute:
    def test_sanitize(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": TOOL_HISTORY_REQUEST["messages"][1:]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["messages"] == [{"role": "user", "content": "and now?"}]
        assert data["dropped"] == {"incomplete_tool_group": 2, "merged_user": 1}
        assert data["events"][0]["kind"] == "incomplete_tool_group"
        assert data["events"][0]["expected"] == 2
        assert data["events"][0]["found"] == 1

    def test_clean_history_unchanged(self, client):
        messages = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        data = client.post("/v1/history/sanitize", json={"messages": messages}).json()
        assert data["messages"] == messages
        assert data["dropped"] == {}
        assert data["events"] == []

    def test_missing_messages(self, client):
        resp = client.post("/v1/history/sanitize", json={"history": []})
        assert resp.status_code == 400

    def test_messages_not_a_list(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": {"role": "user"}})
        assert resp.status_code == 400

    def test_message_without_role(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": [{"content": "hi"}]})
        assert resp.status_code == 400
        assert "role" in resp.json()["detail"]

    def test_body_not_json(self, client):
        resp = client.post("/v1/history/sanitize", content=b"not json",
                           headers={"content-type": "application/json"})
        assert resp.status_code == 400

    def test_malformed_tool_call(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": [
            {"role": "assistant", "tool_calls": [{"id": "a", "function": "oops"}]},
        ]})
        assert resp.status_code == 400
        assert "function" in resp.json()["detail"]

    def test_malformed_content_part(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": [
            {"role": "user", "content": [{"type": "text", "text": 5}]},
        ]})
        assert resp.status_code == 400


class TestContextRoute:
    @pytest.fixture(autouse=True)
    def workspace(self, tmp_path):
        ws = tmp_path / "workspace"
        ws.mkdir()
        (ws / "IDENTITY.md").write_text("I am the test agent.")
        app.dependency_overrides[get_context_builder] = lambda: ContextBuilder(
            ws, global_config_dir=tmp_path / "home", builtin_skills_dir=tmp_path / "builtin")
        return ws

    def test_build_context(self, client):
        resp = client.post("/v1/context", json={
            "history": [
                {"role": "tool", "content": "orphan", "tool_call_id": "x"},
                {"role": "user", "content": "hello"},
                {"role": "assistant", "content": "hi!"},
            ],
            "summary": "Earlier we planned a trip.",
            "message": "what about hotels?",
            "media": ["https://example.com/map.png"],
            "channel": "telegram",
            "chat_id": "1001",
            "tools": [{"type": "function", "function": {"name": "web_search", "description": "Search the web"}}],
        })
        assert resp.status_code == 200
        messages = resp.json()["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        system = messages[0]["content"]
        assert "I am the test agent." in system
        assert "- `web_search` - Search the web" in system
        assert "Chat ID: 1001" in system
        assert "Earlier we planned a trip." in system
        assert messages[-1]["content"] == [
            {"type": "text", "text": "what about hotels?"},
            {"type": "image_url", "image_url": {"url": "https://example.com/map.png"}},
        ]

    def test_minimal_body(self, client):
        messages = client.post("/v1/context", json={"message": "hi"}).json()["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[-1] == {"role": "user", "content": "hi"}


class TestChatCompletions:
    def test_tool_history_sanitized_before_forwarding(self, client):
        resp = client.post("/v1/chat/completions", json=TOOL_HISTORY_REQUEST)
        assert resp.status_code == 200
        assert resp.json()["choices"][0]["message"]["content"] == "Hello from gpt-4o"
        assert resp.headers["x-history-dropped"] == "3"

        forwarded = mock_state["requests"][0]["body"]
        assert forwarded["model"] == "gpt-4o"
        assert forwarded["messages"] == [
            {"role": "system", "content": "You are helpful."},
            {"role": "user", "content": "and now?"},
        ]

    def test_plain_history_forwarded_as_is(self, client):
        req = {"model": "gpt-4o", "messages": [{"role": "user", "content": "hi"}], "temperature": 0.2}
        resp = client.post("/v1/chat/completions", json=req)
        assert resp.status_code == 200
        assert resp.headers["x-history-dropped"] == "0"
        assert mock_state["requests"][0]["body"] == req

    def test_upstream_key_sent(self, client):
        with patch("ctxproxy.config.UPSTREAM_API_KEY", "sk-upstream"):
            client.post("/v1/chat/completions", json={"model": "m", "messages": []})
        assert mock_state["requests"][0]["headers"]["authorization"] == "Bearer sk-upstream"

    def test_streaming(self, client):
        req = dict(TOOL_HISTORY_REQUEST, stream=True)
        resp = client.post("/v1/chat/completions", json=req)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["x-history-dropped"] == "3"
        lines = [line for line in resp.text.split("\n") if line.startswith("data: ")]
        assert lines[-1] == "data: [DONE]"
        assert json.loads(lines[0][6:])["choices"][0]["delta"]["content"] == "Hello"

    def test_upstream_error_passed_through(self, client):
        mock_state["behavior"] = "400_tool_order"
        resp = client.post("/v1/chat/completions", json={"model": "m", "messages": []})
        assert resp.status_code == 400
        assert "No tool output" in resp.json()["error"]["message"]

    def test_upstream_error_streaming(self, client):
        mock_state["behavior"] = "400_tool_order"
        resp = client.post("/v1/chat/completions", json={"model": "m", "messages": [], "stream": True})
        assert resp.status_code == 400
        assert resp.json()["error"]["type"] == "invalid_request_error"

    def test_non_json_upstream_body_wrapped(self, client):
        mock_state["behavior"] = "500_text"
        resp = client.post("/v1/chat/completions", json={"model": "m", "messages": []})
        assert resp.status_code == 500
        assert resp.json() == {"error": "upstream exploded"}

    def test_upstream_unreachable(self, client):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        app.state.client = _upstream_client(httpx.MockTransport(refuse))
        resp = client.post("/v1/chat/completions", json={"model": "m", "messages": []})
        assert resp.status_code == 502
        assert resp.json()["error"]["type"] == "upstream_error"

    def test_undecodable_message(self, client):
        req = {"model": "m", "messages": [{"role": "tool", "content": "x"}, "garbage"]}
        resp = client.post("/v1/chat/completions", json=req)
        assert resp.status_code == 400

    def test_malformed_tool_call(self, client):
        req = {"model": "m", "messages": [
            {"role": "user", "content": "go"},
            {"role": "assistant", "tool_calls": [{"id": "a", "function": "oops"}]},
        ]}
        resp = client.post("/v1/chat/completions", json=req)
        assert resp.status_code == 400
        assert mock_state["requests"] == []


class TestAuth:
    @pytest.fixture(autouse=True)
    def keys_file(self, tmp_path):
        app.dependency_overrides = {}
        path = tmp_path / "keys.json"
        path.write_text(json.dumps({"keys": {
            "sk-good": {"name": "Good", "enabled": True},
            "sk-off": {"name": "Off", "enabled": False},
        }}))
        with patch("ctxproxy.config.KEYS_FILE", path):
            yield path

    def test_missing_key(self, client):
        assert client.post("/v1/history/sanitize", json={"messages": []}).status_code == 401

    def test_invalid_key(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": []}, headers={"x-api-key": "sk-bad"})
        assert resp.status_code == 401

    def test_disabled_key(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": []}, headers={"x-api-key": "sk-off"})
        assert resp.status_code == 403

    def test_bearer_key(self, client):
        resp = client.post("/v1/history/sanitize", json={"messages": []},
                           headers={"Authorization": "Bearer sk-good"})
        assert resp.status_code == 200

    def test_health_needs_no_key(self, client):
        assert client.get("/health").status_code == 200
