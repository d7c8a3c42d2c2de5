"""Abstract base class for model providers.

The orchestrator and the stream endpoint talk to models only through
this interface; provider SDKs are never called directly elsewhere.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from reqpilot.schemas.conversation import ModelConnection, ProviderReply
from reqpilot.schemas.streaming import StreamDelta


class ModelProvider(ABC):
    """Interface for an LLM endpoint resolved from a ModelConnection."""

    def __init__(self, connection: ModelConnection, *, timeout: int = 120) -> None:
        self._connection = connection
        self._timeout = timeout

    # ── Identity ──────────────────────────────────────────────

    @property
    def model_id(self) -> str:
        """LiteLLM model identifier used for routing."""
        return self._connection.model

    @property
    def connection(self) -> ModelConnection:
        return self._connection

    # ── Core interface ────────────────────────────────────────

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> ProviderReply:
        """Send one non-streaming request and normalise the reply.

        Args:
            messages: Full transcript in OpenAI format, system prompt
                included.
            tools: Optional tool descriptors in OpenAI function format.

        Raises:
            TimeoutError: If the call exceeds the timeout after all retries.
            RuntimeError: If the call fails after all retries.
        """

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[StreamDelta]:
        """Yield text increments for a plain (tool-less) request.

        Default implementation falls back to complete() and yields the
        whole reply as a single delta.
        """
        reply = await self.complete(messages)
        if reply.content:
            yield StreamDelta(text=reply.content)
