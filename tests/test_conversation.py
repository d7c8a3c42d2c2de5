"""Tests for reqpilot.orchestration.conversation: plain and tool turns."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from reqpilot.errors import ConfigurationError, ToolConfigError, ToolError, ToolExecutionError
from reqpilot.orchestration.conversation import (
    EMPTY_REPLY,
    NO_SESSION_NOTE,
    UNRECOGNISED_REPLY,
    ConversationOrchestrator,
    build_system_prompt,
)
from reqpilot.providers.litellm_provider import LiteLLMProvider
from reqpilot.schemas.conversation import (
    ConversationRequest,
    MemberInfo,
    ModelConnection,
    ProviderReply,
    ToolCallDescriptor,
    ToolSpec,
)
from reqpilot.schemas.settings import ToolSettings
from reqpilot.tools.connection import ToolSession
from reqpilot.tools.registry import SessionEntry, SessionRegistry

# ── Factories ──────────────────────────────────────────────────────


def _make_member(with_tools: bool = True, **config_overrides) -> MemberInfo:
    config = {
        "mcpServers": {"echo": {"command": "python3", "args": ["echo_server.py"]}},
        "tools": ["declared_tool"],
    }
    config.update(config_overrides)
    return MemberInfo(
        name="Ada",
        role="Requirements analyst",
        responsibilities="Review user stories",
        mcp_config_json=json.dumps(config) if with_tools else None,
    )


def _make_call(call_id: str = "call_1", name: str = "echo", **arguments) -> ToolCallDescriptor:
    arguments = arguments or {"text": "hi"}
    return ToolCallDescriptor(
        id=call_id,
        name=name,
        arguments=arguments,
        raw={
            "id": call_id,
            "type": "function",
            "function": {"name": name, "arguments": json.dumps(arguments)},
        },
    )


def _make_orchestrator(
    *replies: ProviderReply,
    tool_server: AsyncMock | None = None,
    registry: SessionRegistry | None = None,
) -> tuple[ConversationOrchestrator, AsyncMock, AsyncMock]:
    provider = AsyncMock()
    provider.complete.side_effect = list(replies)

    cache = MagicMock()
    cache.get = AsyncMock(return_value=ModelConnection(model="openai/gpt-4o-mini", api_key="sk"))

    if tool_server is None:
        tool_server = AsyncMock()
        tool_server.connect.return_value = ToolSession(
            session_id="mcp-abc", server_name="echo", tools=[ToolSpec(name="echo")],
        )

    orchestrator = ConversationOrchestrator(
        cache,
        tool_server,
        registry or SessionRegistry(),
        lambda connection: provider,
        ToolSettings(),
    )
    return orchestrator, provider, tool_server


def _request(member: MemberInfo | None, session_id: str | None = None) -> ConversationRequest:
    return ConversationRequest(session_id=session_id, user_message="Summarise this", member_info=member)


def _tool_names(provider: AsyncMock, call: int = 0) -> list[str]:
    tools = provider.complete.call_args_list[call].kwargs.get("tools") or []
    return [t["function"]["name"] for t in tools]


# ══════════════════════════════════════════════════════════════════
# Plain mode
# ══════════════════════════════════════════════════════════════════


class TestPlainMode:
    @pytest.mark.asyncio
    async def test_member_without_tools(self):
        orchestrator, provider, tool_server = _make_orchestrator(ProviderReply(content="Sure."))

        response = await orchestrator.handle(_request(_make_member(with_tools=False)))

        assert response.content == "Sure."
        assert response.tool_calls is None
        assert response.session_id is None
        assert response.trace == ["no_session", "plain", "replied"]
        tool_server.connect.assert_not_awaited()

        messages = provider.complete.call_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "Ada" in messages[0]["content"]
        assert messages[1]["content"] == "Summarise this"
        assert "tools" not in provider.complete.call_args.kwargs

    @pytest.mark.asyncio
    async def test_no_member_uses_assistant_prompt(self):
        orchestrator, provider, _ = _make_orchestrator(ProviderReply(content="Hi"))
        await orchestrator.handle(_request(None))
        system = provider.complete.call_args.args[0][0]["content"]
        assert system == build_system_prompt(None)

    @pytest.mark.asyncio
    async def test_empty_reply_gets_fallback(self):
        orchestrator, _, _ = _make_orchestrator(ProviderReply(content=""))
        response = await orchestrator.handle(_request(None))
        assert response.content == EMPTY_REPLY

    @pytest.mark.asyncio
    async def test_unrecognised_reply(self):
        orchestrator, _, _ = _make_orchestrator(ProviderReply(recognised=False))
        response = await orchestrator.handle(_request(None))
        assert response.content == UNRECOGNISED_REPLY

    @pytest.mark.asyncio
    async def test_configuration_error_is_fatal(self):
        orchestrator, provider, _ = _make_orchestrator()
        orchestrator._config_cache.get.side_effect = ConfigurationError("No default model configuration found")

        with pytest.raises(ConfigurationError):
            await orchestrator.handle(_request(None))
        provider.complete.assert_not_awaited()


# ══════════════════════════════════════════════════════════════════
# Tool mode: sessions
# ══════════════════════════════════════════════════════════════════


class TestToolSessions:
    @pytest.mark.asyncio
    async def test_opens_and_caches_session(self):
        orchestrator, provider, tool_server = _make_orchestrator(ProviderReply(content="Done"))

        response = await orchestrator.handle(_request(_make_member()))

        assert response.session_id == "mcp-abc"
        assert response.trace == ["no_session", "session_created", "replied"]
        assert _tool_names(provider) == ["echo"]
        assert "mcp-abc" in orchestrator.registry
        server = tool_server.connect.call_args.args[0]
        assert (server.command, server.args) == ("python3", ["echo_server.py"])

    @pytest.mark.asyncio
    async def test_declared_tools_used_when_server_lists_none(self):
        tool_server = AsyncMock()
        tool_server.connect.return_value = ToolSession(session_id="mcp-x", tools=[])
        orchestrator, provider, _ = _make_orchestrator(
            ProviderReply(content="ok"), tool_server=tool_server,
        )
        await orchestrator.handle(_request(_make_member()))
        assert _tool_names(provider) == ["declared_tool"]

    @pytest.mark.asyncio
    async def test_reuses_cached_session(self):
        registry = SessionRegistry()
        registry.register(SessionEntry(
            session_id="mcp-cached",
            system_prompt="Cached prompt",
            tools=[ToolSpec(name="cached_tool")],
        ))
        orchestrator, provider, tool_server = _make_orchestrator(
            ProviderReply(content="Again"), registry=registry,
        )

        response = await orchestrator.handle(_request(_make_member(), session_id="mcp-cached"))

        tool_server.connect.assert_not_awaited()
        assert response.session_id == "mcp-cached"
        assert response.trace == ["no_session", "session_cached", "replied"]
        assert provider.complete.call_args.args[0][0]["content"] == "Cached prompt"
        assert _tool_names(provider) == ["cached_tool"]

    @pytest.mark.asyncio
    async def test_unknown_session_id_opens_new(self):
        orchestrator, _, tool_server = _make_orchestrator(ProviderReply(content="ok"))
        response = await orchestrator.handle(_request(_make_member(), session_id="mcp-gone"))
        tool_server.connect.assert_awaited_once()
        assert response.session_id == "mcp-abc"

    @pytest.mark.asyncio
    async def test_connect_failure_falls_back_to_declared_tools(self):
        tool_server = AsyncMock()
        tool_server.connect.side_effect = ToolError("spawn failed")
        orchestrator, provider, _ = _make_orchestrator(
            ProviderReply(content="Plain answer"), tool_server=tool_server,
        )

        response = await orchestrator.handle(_request(_make_member()))

        assert response.content == "Plain answer"
        assert response.session_id is None
        assert response.trace == ["no_session", "config_fallback", "replied"]
        assert _tool_names(provider) == ["declared_tool"]

    @pytest.mark.asyncio
    async def test_disallowed_command_never_spawned(self):
        member = _make_member(mcpServers={"sh": {"command": "bash", "args": ["-c", "id"]}})
        orchestrator, _, tool_server = _make_orchestrator(ProviderReply(content="ok"))

        response = await orchestrator.handle(_request(member))

        tool_server.connect.assert_not_awaited()
        assert "config_fallback" in response.trace

    @pytest.mark.asyncio
    async def test_open_session_requires_server(self):
        orchestrator, _, _ = _make_orchestrator()
        member = MemberInfo(name="Ada", mcp_config_json=json.dumps({"tools": ["a"]}))
        with pytest.raises(ToolConfigError, match="does not define a server"):
            await orchestrator.open_session(member)

    @pytest.mark.asyncio
    async def test_close_session(self):
        orchestrator, _, tool_server = _make_orchestrator()
        entry = await orchestrator.open_session(_make_member())

        assert await orchestrator.close_session(entry.session_id) is True
        tool_server.close.assert_awaited_once_with("mcp-abc")
        assert await orchestrator.close_session(entry.session_id) is False


# ══════════════════════════════════════════════════════════════════
# Tool mode: dispatch
# ══════════════════════════════════════════════════════════════════


class TestToolDispatch:
    @pytest.mark.asyncio
    async def test_tool_result_fed_back_to_model(self):
        orchestrator, provider, tool_server = _make_orchestrator(
            ProviderReply(content="", tool_calls=[_make_call()]),
            ProviderReply(content="The echo said hi."),
        )
        tool_server.call_tool.return_value = "hi"

        response = await orchestrator.handle(_request(_make_member()))

        tool_server.call_tool.assert_awaited_once_with("mcp-abc", "echo", {"text": "hi"})
        assert response.content == "The echo said hi."
        assert response.tool_calls == [_make_call().raw]
        assert response.trace == ["no_session", "session_created", "tool_dispatch", "replied"]

        transcript = provider.complete.call_args.args[0]
        assert [m["role"] for m in transcript] == ["system", "user", "assistant", "tool"]
        assert transcript[2]["content"] is None
        assert transcript[2]["tool_calls"][0]["function"]["name"] == "echo"
        assert transcript[3] == {"role": "tool", "tool_call_id": "call_1", "content": "hi"}
        assert _tool_names(provider, call=1) == ["echo"]

    @pytest.mark.asyncio
    async def test_calls_run_serially_with_follow_up_each(self):
        orchestrator, provider, tool_server = _make_orchestrator(
            ProviderReply(tool_calls=[_make_call("c1", text="a"), _make_call("c2", text="b")]),
            ProviderReply(content="after first"),
            ProviderReply(content="after second"),
        )
        tool_server.call_tool.side_effect = ["A", "B"]

        response = await orchestrator.handle(_request(_make_member()))

        assert [c.args[2] for c in tool_server.call_tool.await_args_list] == [{"text": "a"}, {"text": "b"}]
        assert provider.complete.await_count == 3
        assert response.content == "after second"
        transcript = provider.complete.call_args.args[0]
        assert [m["role"] for m in transcript] == [
            "system", "user", "assistant", "tool", "assistant", "tool",
        ]

    @pytest.mark.asyncio
    async def test_tool_failure_becomes_inline_note(self):
        orchestrator, provider, tool_server = _make_orchestrator(
            ProviderReply(content="Checking.", tool_calls=[_make_call()]),
        )
        tool_server.call_tool.side_effect = ToolExecutionError("video not found")

        response = await orchestrator.handle(_request(_make_member()))

        assert response.content == "Checking.\n\nTool call failed: video not found"
        assert provider.complete.await_count == 1
        assert response.trace[-1] == "replied"

    @pytest.mark.asyncio
    async def test_follow_up_failure_becomes_inline_note(self):
        orchestrator, _, tool_server = _make_orchestrator(
            ProviderReply(content="Checking.", tool_calls=[_make_call()]),
            RuntimeError("Model call failed after 3 retries"),
        )
        tool_server.call_tool.return_value = "data"

        response = await orchestrator.handle(_request(_make_member()))

        assert response.content.startswith("Checking.\n\nTool call failed: Model call failed")

    @pytest.mark.asyncio
    async def test_follow_up_provider_rejection_becomes_inline_note(self):
        import litellm

        tool_call = {
            "id": "call_1",
            "type": "function",
            "function": {"name": "echo", "arguments": "{\"text\": \"hi\"}"},
        }
        first = {"choices": [{"message": {"content": "Checking.", "tool_calls": [tool_call]}}]}
        mock_acomp = AsyncMock(side_effect=[
            first,
            litellm.NotFoundError(message="model gone", model="test", llm_provider="test"),
        ])

        tool_server = AsyncMock()
        tool_server.connect.return_value = ToolSession(
            session_id="mcp-abc", server_name="echo", tools=[ToolSpec(name="echo")],
        )
        tool_server.call_tool.return_value = "data"
        cache = MagicMock()
        cache.get = AsyncMock(return_value=ModelConnection(model="openai/gpt-4o-mini", api_key="sk"))
        orchestrator = ConversationOrchestrator(
            cache, tool_server, SessionRegistry(), LiteLLMProvider, ToolSettings(),
        )

        with patch("reqpilot.providers.litellm_provider.litellm.acompletion", mock_acomp):
            response = await orchestrator.handle(_request(_make_member()))

        assert response.content.startswith("Checking.\n\nTool call failed: Model call to")
        assert "model gone" in response.content
        assert response.trace[-1] == "replied"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_later_calls(self):
        orchestrator, _, tool_server = _make_orchestrator(
            ProviderReply(tool_calls=[_make_call("c1"), _make_call("c2")]),
            ProviderReply(content="second worked"),
        )
        tool_server.call_tool.side_effect = [ToolExecutionError("first broke"), "ok"]

        response = await orchestrator.handle(_request(_make_member()))

        assert tool_server.call_tool.await_count == 2
        assert response.content == "second worked"

    @pytest.mark.asyncio
    async def test_tool_calls_without_session(self):
        tool_server = AsyncMock()
        tool_server.connect.side_effect = ToolError("spawn failed")
        orchestrator, _, _ = _make_orchestrator(
            ProviderReply(content="Let me look.", tool_calls=[_make_call()]),
            tool_server=tool_server,
        )

        response = await orchestrator.handle(_request(_make_member()))

        tool_server.call_tool.assert_not_awaited()
        assert response.content == "Let me look." + NO_SESSION_NOTE
        assert response.tool_calls == [_make_call().raw]
        assert response.trace == ["no_session", "config_fallback", "tool_unavailable"]


class TestBuildSystemPrompt:
    def test_member_prompt(self):
        prompt = build_system_prompt(_make_member())
        assert prompt == (
            "You are an AI team member named Ada. Requirements analyst. "
            "Your responsibilities are: Review user stories. "
            "Provide professional, valuable replies."
        )

    def test_member_without_role(self):
        prompt = build_system_prompt(MemberInfo(name="Bo"))
        assert prompt == "You are an AI team member named Bo. Provide professional, valuable replies."

    def test_default_assistant(self):
        assert build_system_prompt(None).startswith("You are a professional AI assistant.")
