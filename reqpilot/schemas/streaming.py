"""Streaming schemas for incremental text reconstruction.

Defines the terminal states of a stream session, the progress chunk
delivered to display code, and the final aggregated result.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class TerminalState(StrEnum):
    """Lifecycle state of a single streamed request."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamChunk(BaseModel):
    """A single progress update for one watched field."""

    field: str = Field(default="content", description="Field this update belongs to")
    delta: str = Field(description="New text in this chunk")
    accumulated: str = Field(description="Full text accumulated so far")
    is_complete: bool = Field(
        default=False, description="True on final chunk"
    )


class StreamResult(BaseModel):
    """Final outcome of a completed stream session."""

    fields: dict[str, str] = Field(
        default_factory=dict, description="Accumulated text per watched field"
    )
    primary_field: str = Field(
        default="content", description="Field returned by the text property"
    )
    records: int = Field(default=0, ge=0, description="Records successfully parsed")
    skipped_lines: int = Field(
        default=0, ge=0, description="Lines discarded as parse noise"
    )

    @property
    def text(self) -> str:
        """Accumulated value of the primary field."""
        return self.fields.get(self.primary_field, "")


class StreamDelta(BaseModel):
    """One increment emitted by a provider token stream."""

    field: str = Field(default="content", description="'content' or 'reasoning'")
    text: str = Field(description="Incremental text")


class StreamRequest(BaseModel):
    """Body of POST /api/ai/stream."""

    prompt: str = Field(default="", description="User prompt")
    system: str = Field(default="", description="Optional system prompt")
