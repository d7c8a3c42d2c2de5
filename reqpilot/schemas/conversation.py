"""Conversation schemas for the tool-calling orchestration endpoint.

Covers the inbound request (member descriptor, user message, optional
session id), the outbound response, chat transcript messages, model
connection parameters, and tool descriptors.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MemberInfo(BaseModel):
    """An AI team member the user is talking to."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(description="Display name of the member")
    role: str = Field(default="", description="Role statement")
    responsibilities: str = Field(default="", description="Responsibilities statement")
    mcp_config_json: str | None = Field(
        default=None,
        alias="mcpConfigJson",
        description="Raw tool-server configuration (JSON text)",
    )

    @property
    def has_tool_config(self) -> bool:
        return bool(self.mcp_config_json)


class ConversationRequest(BaseModel):
    """Body of POST /api/mcp/conversation."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")
    user_message: str = Field(default="", alias="userMessage")
    member_info: MemberInfo | None = Field(default=None, alias="memberInfo")


class ToolCallDescriptor(BaseModel):
    """One tool invocation requested by the model."""

    id: str = Field(default="", description="Opaque call id used to correlate the result")
    name: str = Field(description="Tool name")
    arguments: Any = Field(default_factory=dict, description="JSON-compatible arguments")
    raw: dict[str, Any] = Field(
        default_factory=dict, description="The provider's original tool-call entry"
    )

    def to_openai(self) -> dict[str, Any]:
        """Render as an assistant-message ``tool_calls`` entry."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


class ConversationResponse(BaseModel):
    """Body returned by POST /api/mcp/conversation."""

    model_config = ConfigDict(populate_by_name=True)

    content: str
    tool_calls: list[dict[str, Any]] | None = Field(default=None, alias="toolCalls")
    session_id: str | None = Field(default=None, alias="sessionId")
    trace: list[str] = Field(default_factory=list, description="States visited")


class ChatMessage(BaseModel):
    """One message in the transcript sent to the model."""

    role: str
    content: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def to_wire(self) -> dict[str, Any]:
        """Serialize in OpenAI format, omitting unset optional keys."""
        return self.model_dump(exclude_none=True) | {"content": self.content}


class ModelConnection(BaseModel):
    """Resolved connection parameters for one LLM endpoint."""

    model: str = Field(description="LiteLLM model identifier")
    base_url: str = Field(default="", description="Custom API base URL")
    api_key: str = Field(default="", repr=False, description="Plaintext API key")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)


class ToolSpec(BaseModel):
    """A tool advertised to the model."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ProviderReply(BaseModel):
    """Normalised model reply across OpenAI and Anthropic response shapes."""

    content: str = ""
    tool_calls: list[ToolCallDescriptor] = Field(default_factory=list)
    recognised: bool = Field(
        default=True, description="False when the payload shape was unknown"
    )


class SessionRequest(BaseModel):
    """Body of POST /api/mcp/session."""

    model_config = ConfigDict(populate_by_name=True)

    member_info: MemberInfo = Field(alias="memberInfo")
