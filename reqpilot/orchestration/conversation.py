"""Conversation orchestration with optional tool-server dispatch.

A turn runs in one of two modes:

* Plain mode, when the member carries no tool configuration: system
  prompt plus user message go to the model and its reply is returned.
* Tool mode: a cached session is reused, or a new tool-server session
  opened, and the model is offered that session's tools. Each tool call
  it requests is executed serially, its result appended to the
  transcript, and the model asked again for a final answer. Failed
  calls become inline notes in the answer instead of failing the turn.

Branching is driven by the decision table in states.py and recorded in
the response trace.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from reqpilot.errors import ToolConfigError, ToolError
from reqpilot.orchestration.config_cache import DefaultConfigCache
from reqpilot.orchestration.states import ConversationEvent, ConversationMachine
from reqpilot.prompts import render_prompt
from reqpilot.providers.base import ModelProvider
from reqpilot.providers.litellm_provider import format_tools
from reqpilot.schemas.conversation import (
    ChatMessage,
    ConversationRequest,
    ConversationResponse,
    MemberInfo,
    ModelConnection,
    ProviderReply,
    ToolSpec,
)
from reqpilot.schemas.settings import ToolSettings
from reqpilot.tools.config import parse_tool_config, validate_server_config
from reqpilot.tools.connection import ToolServer
from reqpilot.tools.registry import SessionEntry, SessionRegistry

logger = logging.getLogger(__name__)

TOOL_FAILED_NOTE = "\n\nTool call failed: {error}"
NO_SESSION_NOTE = (
    "\n\n(This conversation is not connected to a tool server; "
    "tool calls could not be executed.)"
)
EMPTY_REPLY = "The assistant did not produce a reply. Please try again."
UNRECOGNISED_REPLY = (
    "The model's response could not be understood. Please contact your administrator."
)

ProviderFactory = Callable[[ModelConnection], ModelProvider]


def build_system_prompt(member: MemberInfo | None) -> str:
    if member is None:
        return render_prompt("assistant")
    return render_prompt(
        "member",
        name=member.name,
        role=member.role.strip().rstrip("."),
        responsibilities=member.responsibilities.strip().rstrip("."),
    )


def _config_tools(member: MemberInfo) -> list[ToolSpec]:
    """Tools declared in the member's configuration, or none if it is unusable."""
    try:
        return parse_tool_config(member.mcp_config_json or "").tools
    except ToolConfigError:
        return []


class ConversationOrchestrator:
    """Runs conversation turns against the default model.

    Args:
        config_cache: Resolves the default ModelConnection.
        tool_server: Backend used to open sessions and call tools.
        registry: Session cache shared across turns.
        provider_factory: Builds a ModelProvider for a connection.
        tool_settings: Command and package allowlists.
    """

    def __init__(
        self,
        config_cache: DefaultConfigCache,
        tool_server: ToolServer,
        registry: SessionRegistry,
        provider_factory: ProviderFactory,
        tool_settings: ToolSettings | None = None,
    ) -> None:
        self._config_cache = config_cache
        self._tools = tool_server
        self._registry = registry
        self._provider_factory = provider_factory
        self._tool_settings = tool_settings or ToolSettings()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ── Sessions ──────────────────────────────────────────────

    async def open_session(self, member: MemberInfo) -> SessionEntry:
        """Parse, validate and connect the member's tool server.

        Raises:
            ToolConfigError: The configuration is unusable or not permitted.
            ToolError: The server could not be reached.
        """
        config = parse_tool_config(member.mcp_config_json or "")
        if config.server is None:
            raise ToolConfigError("Tool configuration does not define a server")
        validate_server_config(
            config.server,
            self._tool_settings.allowed_commands,
            self._tool_settings.npm_allowlist,
        )

        session = await self._tools.connect(config.server)
        entry = SessionEntry(
            session_id=session.session_id,
            system_prompt=build_system_prompt(member),
            tools=session.tools or config.tools,
            member=member,
        )
        self._registry.register(entry)
        return entry

    async def close_session(self, session_id: str) -> bool:
        entry = self._registry.remove(session_id)
        await self._tools.close(session_id)
        return entry is not None

    # ── Turns ─────────────────────────────────────────────────

    async def handle(self, request: ConversationRequest) -> ConversationResponse:
        """Run one turn.

        Raises:
            ConfigurationError: The default model connection is unavailable.
            RuntimeError: The initial model call failed.
        """
        connection = await self._config_cache.get()
        provider = self._provider_factory(connection)
        machine = ConversationMachine()
        member = request.member_info

        if member is None or not member.has_tool_config:
            machine.fire(ConversationEvent.NO_TOOL_CONFIG)
            messages = self._transcript(build_system_prompt(member), request.user_message)
            reply = await provider.complete(messages)
            machine.fire(ConversationEvent.REPLY)
            return self._respond(_reply_text(reply), None, None, machine)

        entry = self._registry.get(request.session_id)
        if entry is not None:
            machine.fire(ConversationEvent.SESSION_FOUND)
        else:
            try:
                entry = await self.open_session(member)
                machine.fire(ConversationEvent.SESSION_OPENED)
            except ToolError as e:
                logger.warning("Tool session unavailable for %s: %s", member.name, e)
                machine.fire(ConversationEvent.CONNECT_FAILED)

        system_prompt = entry.system_prompt if entry else build_system_prompt(member)
        tools = entry.tools if entry else _config_tools(member)
        formatted = format_tools(tools) or None

        messages = self._transcript(system_prompt, request.user_message)
        reply = await provider.complete(messages, tools=formatted)
        content = _reply_text(reply)

        if not reply.tool_calls:
            machine.fire(ConversationEvent.REPLY)
            return self._respond(content, None, entry, machine)

        raw_calls = [call.raw or call.to_openai() for call in reply.tool_calls]
        if entry is None:
            machine.fire(ConversationEvent.TOOL_CALLS_NO_SESSION)
            logger.warning("Model requested %d tool calls without a session", len(raw_calls))
            return self._respond(content + NO_SESSION_NOTE, raw_calls, None, machine)

        machine.fire(ConversationEvent.TOOL_CALLS)
        content = await self._dispatch(provider, entry, messages, reply, formatted, content)
        machine.fire(ConversationEvent.REPLY)
        return self._respond(content, raw_calls, entry, machine)

    async def _dispatch(
        self,
        provider: ModelProvider,
        entry: SessionEntry,
        messages: list[dict[str, Any]],
        reply: ProviderReply,
        formatted: list[dict[str, Any]] | None,
        content: str,
    ) -> str:
        """Execute tool calls one at a time, re-asking the model after each."""
        for call in reply.tool_calls:
            try:
                result = await self._tools.call_tool(entry.session_id, call.name, call.arguments)
                messages.append(
                    ChatMessage(role="assistant", tool_calls=[call.to_openai()]).to_wire()
                )
                messages.append(
                    ChatMessage(role="tool", tool_call_id=call.id, content=result).to_wire()
                )
                follow_up = await provider.complete(messages, tools=formatted)
                content = follow_up.content
            except (ToolError, RuntimeError, TimeoutError) as e:
                logger.warning("Tool call %s failed: %s", call.name, e)
                content += TOOL_FAILED_NOTE.format(error=str(e) or type(e).__name__)
        return content

    @staticmethod
    def _transcript(system_prompt: str, user_message: str) -> list[dict[str, Any]]:
        return [
            ChatMessage(role="system", content=system_prompt).to_wire(),
            ChatMessage(role="user", content=user_message).to_wire(),
        ]

    @staticmethod
    def _respond(
        content: str,
        tool_calls: list[dict[str, Any]] | None,
        entry: SessionEntry | None,
        machine: ConversationMachine,
    ) -> ConversationResponse:
        return ConversationResponse(
            content=content or EMPTY_REPLY,
            tool_calls=tool_calls,
            session_id=entry.session_id if entry else None,
            trace=machine.trace,
        )


def _reply_text(reply: ProviderReply) -> str:
    return reply.content if reply.recognised else UNRECOGNISED_REPLY
