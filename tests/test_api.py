"""Tests for reqpilot.api.app: HTTP routes via TestClient."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from reqpilot.api.app import create_app
from reqpilot.errors import ToolError
from reqpilot.keys import ENCRYPTION_KEY_ENV
from reqpilot.schemas.conversation import ProviderReply, ToolSpec
from reqpilot.schemas.settings import AppSettings, DatabaseSettings
from reqpilot.schemas.streaming import StreamDelta
from reqpilot.tools.connection import ToolSession

_MEMBER = {
    "name": "Ada",
    "role": "Analyst",
    "responsibilities": "Review stories",
    "mcpConfigJson": json.dumps({"mcpServers": {"echo": {"command": "python3", "args": ["s.py"]}}}),
}


class _FakeProvider:
    def __init__(self, deltas=(), fail: Exception | None = None, reply: ProviderReply | None = None):
        self._deltas = deltas
        self._fail = fail
        self.complete = AsyncMock(return_value=reply or ProviderReply(content="Hello from the model"))
        self.messages: list | None = None

    async def stream(self, messages):
        self.messages = messages
        for delta in self._deltas:
            yield delta
        if self._fail is not None:
            raise self._fail


def _make_tool_server() -> AsyncMock:
    tool_server = AsyncMock()
    tool_server.connect.return_value = ToolSession(
        session_id="mcp-123", server_name="echo", tools=[ToolSpec(name="echo")],
    )
    return tool_server


@pytest.fixture()
def env_secret(monkeypatch):
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, "api-test-secret")


def _client(tmp_path, provider: _FakeProvider, tool_server: AsyncMock | None = None) -> TestClient:
    settings = AppSettings(database=DatabaseSettings(path=str(tmp_path / "api.db")))
    app = create_app(
        settings,
        tool_server=tool_server or _make_tool_server(),
        provider_factory=lambda connection: provider,
    )
    return TestClient(app)


def _add_default(client: TestClient) -> None:
    resp = client.post("/api/ai-config", json={
        "name": "Primary", "model": "openai/gpt-4o-mini", "apiKey": "sk-live",
    })
    assert resp.status_code == 201


def _lines(body: str) -> list[dict]:
    return [json.loads(line) for line in body.splitlines() if line]


# ── Health ─────────────────────────────────────────────────────────


def test_health(tmp_path):
    with _client(tmp_path, _FakeProvider()) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── Streaming ──────────────────────────────────────────────────────


class TestStreamRoute:
    def test_streams_ndjson(self, tmp_path, env_secret):
        provider = _FakeProvider(deltas=[
            StreamDelta(field="reasoning", text="hmm"),
            StreamDelta(text="Hello, "),
            StreamDelta(text="world"),
        ])
        with _client(tmp_path, provider) as client:
            _add_default(client)
            resp = client.post("/api/ai/stream", json={"prompt": "Say hi", "system": "Be brief"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/x-ndjson")
        assert _lines(resp.text) == [{"reasoning": "hmm"}, {"content": "Hello, "}, {"content": "world"}]
        assert [m["role"] for m in provider.messages] == ["system", "user"]

    def test_missing_prompt(self, tmp_path):
        with _client(tmp_path, _FakeProvider()) as client:
            resp = client.post("/api/ai/stream", json={})
        assert resp.status_code == 400
        assert "prompt" in resp.json()["error"]

    def test_no_default_config(self, tmp_path):
        with _client(tmp_path, _FakeProvider()) as client:
            resp = client.post("/api/ai/stream", json={"prompt": "hi"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "No default model configuration found"}

    def test_provider_failure_in_band(self, tmp_path, env_secret):
        provider = _FakeProvider(deltas=[StreamDelta(text="part")], fail=RuntimeError("quota exceeded"))
        with _client(tmp_path, provider) as client:
            _add_default(client)
            resp = client.post("/api/ai/stream", json={"prompt": "hi"})

        assert resp.status_code == 200
        assert _lines(resp.text) == [{"content": "part"}, {"error": "quota exceeded"}]


# ── Conversation ───────────────────────────────────────────────────


class TestConversationRoute:
    def test_missing_user_message(self, tmp_path, env_secret):
        provider = _FakeProvider()
        with _client(tmp_path, provider) as client:
            _add_default(client)
            resp = client.post("/api/mcp/conversation", json={})

        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required parameter: userMessage"}
        provider.complete.assert_not_awaited()

    def test_plain_turn(self, tmp_path, env_secret):
        provider = _FakeProvider()
        with _client(tmp_path, provider) as client:
            _add_default(client)
            resp = client.post("/api/mcp/conversation", json={
                "userMessage": "Hi", "memberInfo": {"name": "Ada"},
            })

        assert resp.status_code == 200
        body = resp.json()
        assert body["content"] == "Hello from the model"
        assert body["trace"] == ["no_session", "plain", "replied"]
        assert "toolCalls" not in body
        assert "sessionId" not in body

    def test_tool_turn_returns_session(self, tmp_path, env_secret):
        with _client(tmp_path, _FakeProvider()) as client:
            _add_default(client)
            resp = client.post("/api/mcp/conversation", json={"userMessage": "Hi", "memberInfo": _MEMBER})

        assert resp.json()["sessionId"] == "mcp-123"

    def test_missing_encryption_key(self, tmp_path, monkeypatch):
        monkeypatch.setenv(ENCRYPTION_KEY_ENV, "api-test-secret")
        with _client(tmp_path, _FakeProvider()) as client:
            _add_default(client)
            monkeypatch.delenv(ENCRYPTION_KEY_ENV)
            resp = client.post("/api/mcp/conversation", json={"userMessage": "Hi"})

        assert resp.status_code == 500
        assert ENCRYPTION_KEY_ENV in resp.json()["error"]

    def test_model_failure(self, tmp_path, env_secret):
        provider = _FakeProvider()
        provider.complete.side_effect = RuntimeError("Model call failed after 3 retries")
        with _client(tmp_path, provider) as client:
            _add_default(client)
            resp = client.post("/api/mcp/conversation", json={"userMessage": "Hi"})

        assert resp.status_code == 500
        assert "failed after 3 retries" in resp.json()["error"]


# ── Sessions ───────────────────────────────────────────────────────


class TestSessionRoutes:
    def test_open_list_close(self, tmp_path):
        tool_server = _make_tool_server()
        with _client(tmp_path, _FakeProvider(), tool_server) as client:
            opened = client.post("/api/mcp/session", json={"memberInfo": _MEMBER})
            listed = client.get("/api/mcp/session")
            closed = client.delete("/api/mcp/session/mcp-123")
            missing = client.delete("/api/mcp/session/mcp-123")

        assert opened.status_code == 200
        assert opened.json()["sessionId"] == "mcp-123"
        assert opened.json()["tools"][0]["name"] == "echo"
        assert [s["sessionId"] for s in listed.json()] == ["mcp-123"]
        assert listed.json()[0]["member"] == "Ada"
        assert closed.status_code == 200
        assert missing.status_code == 404

    def test_rejected_config(self, tmp_path):
        member = dict(_MEMBER, mcpConfigJson=json.dumps({"mcpServers": {"x": {"command": "bash"}}}))
        with _client(tmp_path, _FakeProvider()) as client:
            resp = client.post("/api/mcp/session", json={"memberInfo": member})
        assert resp.status_code == 400
        assert "Unsupported command" in resp.json()["error"]

    def test_unreachable_server(self, tmp_path):
        tool_server = _make_tool_server()
        tool_server.connect.side_effect = ToolError("spawn failed")
        with _client(tmp_path, _FakeProvider(), tool_server) as client:
            resp = client.post("/api/mcp/session", json={"memberInfo": _MEMBER})
        assert resp.status_code == 502

    def test_shutdown_closes_sessions(self, tmp_path):
        tool_server = _make_tool_server()
        with _client(tmp_path, _FakeProvider(), tool_server):
            pass
        tool_server.close_all.assert_awaited_once()


# ── Model configuration ────────────────────────────────────────────


class TestConfigRoutes:
    def test_add_and_list(self, tmp_path, env_secret):
        with _client(tmp_path, _FakeProvider()) as client:
            _add_default(client)
            resp = client.get("/api/ai-config")

        (config,) = resp.json()
        assert config["name"] == "Primary"
        assert config["is_default"] is True
        assert config["has_api_key"] is True
        assert "sk-live" not in resp.text

    def test_switching_default_invalidates_cache(self, tmp_path, env_secret):
        provider = _FakeProvider()
        models: list[str] = []

        def factory(connection):
            models.append(connection.model)
            return provider

        settings = AppSettings(database=DatabaseSettings(path=str(tmp_path / "api.db")))
        app = create_app(settings, tool_server=_make_tool_server(), provider_factory=factory)
        with TestClient(app) as client:
            _add_default(client)
            second = client.post("/api/ai-config", json={"name": "Alt", "model": "anthropic/claude-sonnet-4-5"})
            client.post("/api/mcp/conversation", json={"userMessage": "Hi"})
            client.post(f"/api/ai-config/{second.json()['id']}/default")
            client.post("/api/mcp/conversation", json={"userMessage": "Hi"})

        assert models == ["openai/gpt-4o-mini", "anthropic/claude-sonnet-4-5"]

    def test_unknown_config(self, tmp_path):
        with _client(tmp_path, _FakeProvider()) as client:
            assert client.post("/api/ai-config/nope/default").status_code == 404
            assert client.delete("/api/ai-config/nope").status_code == 404

    def test_invalidate_endpoint(self, tmp_path):
        with _client(tmp_path, _FakeProvider()) as client:
            resp = client.post("/api/ai-config/default/invalidate")
        assert resp.json() == {"success": True}
