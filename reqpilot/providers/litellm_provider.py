"""LiteLLM adapter implementing the ModelProvider interface.

Routes requests to any provider via litellm.acompletion(), retries
transient failures with exponential backoff, and normalises both the
OpenAI (``choices[0].message``) and Anthropic (``content[]``) reply
shapes into a ProviderReply.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from reqpilot.providers.base import ModelProvider
from reqpilot.schemas.conversation import (
    ModelConnection,
    ProviderReply,
    ToolCallDescriptor,
    ToolSpec,
)
from reqpilot.schemas.streaming import StreamDelta

logger = logging.getLogger(__name__)

# Max retries for transient failures
_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds


def _short_error_reason(error: Exception) -> str:
    """Map a LiteLLM error to a short description for log lines."""
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    return str(error)[:80]


# ── Reply normalisation ───────────────────────────────────────


def _parse_arguments(arguments: Any) -> Any:
    """Decode a JSON-encoded argument string, keeping undecodable text."""
    if arguments is None or arguments == "":
        return {}
    if not isinstance(arguments, str):
        return arguments
    try:
        return json.loads(arguments)
    except json.JSONDecodeError:
        return {"raw": arguments}


def _parse_openai(payload: dict[str, Any]) -> ProviderReply:
    message = payload["choices"][0].get("message") or {}
    calls = []
    for entry in message.get("tool_calls") or []:
        function = entry.get("function") or {}
        calls.append(ToolCallDescriptor(
            id=entry.get("id") or "",
            name=function.get("name") or "",
            arguments=_parse_arguments(function.get("arguments")),
            raw=entry,
        ))
    content = message.get("content")
    return ProviderReply(content=content if isinstance(content, str) else "", tool_calls=calls)


def _parse_anthropic(payload: dict[str, Any]) -> ProviderReply:
    texts: list[str] = []
    calls = []
    for block in payload["content"]:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text":
            texts.append(block.get("text") or "")
        elif block.get("type") == "tool_use":
            calls.append(ToolCallDescriptor(
                id=block.get("id") or "",
                name=block.get("name") or "",
                arguments=block.get("input") or {},
                raw=block,
            ))
    return ProviderReply(content="".join(texts), tool_calls=calls)


def parse_reply(payload: Any) -> ProviderReply:
    """Normalise a provider response body into a ProviderReply.

    Unknown shapes produce an empty reply with ``recognised=False``
    rather than an error.
    """
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump()
    if not isinstance(payload, dict):
        return ProviderReply(recognised=False)

    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return _parse_openai(payload)
    if isinstance(payload.get("content"), list):
        return _parse_anthropic(payload)

    logger.warning("Unrecognised provider response shape: keys=%s", sorted(payload))
    return ProviderReply(recognised=False)


def format_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
    """Render tools in the OpenAI function format.

    LiteLLM translates this format for Anthropic models.
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


class LiteLLMProvider(ModelProvider):
    """Universal LLM adapter powered by LiteLLM."""

    def __init__(self, connection: ModelConnection, *, timeout: int = 120) -> None:
        super().__init__(connection, timeout=timeout)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> ProviderReply:
        kwargs = self._build_completion_kwargs(messages, tools)
        response = await self._call_with_retry(kwargs)
        reply = parse_reply(response)
        logger.debug(
            "Completion from %s: %d chars, %d tool calls",
            self.model_id, len(reply.content), len(reply.tool_calls),
        )
        return reply

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[StreamDelta]:
        """Stream content and reasoning increments from the model."""
        kwargs = self._build_completion_kwargs(messages, None)
        kwargs["stream"] = True

        response = await self._call_with_retry(kwargs)
        async for chunk in response:
            if not chunk.choices or not chunk.choices[0].delta:
                continue
            delta = chunk.choices[0].delta
            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                yield StreamDelta(field="reasoning", text=reasoning)
            if delta.content:
                yield StreamDelta(field="content", text=delta.content)

    def _build_completion_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
    ) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self._connection.model,
            "messages": messages,
            "temperature": self._connection.temperature,
            "max_tokens": self._connection.max_tokens,
            "timeout": float(self._timeout),
        }

        if self._connection.api_key:
            kwargs["api_key"] = self._connection.api_key

        if self._connection.base_url:
            kwargs["api_base"] = self._connection.base_url

        if tools:
            kwargs["tools"] = tools

        return kwargs

    async def _call_with_retry(self, kwargs: dict) -> Any:
        """Call litellm.acompletion with exponential backoff retry.

        Retries on transient errors (rate limits, server errors, timeouts).
        Non-retryable errors (auth, invalid request, unknown model, permission)
        are raised immediately. Every LiteLLM failure surfaces as RuntimeError
        or TimeoutError.

        Raises:
            TimeoutError: If all retries time out.
            RuntimeError: If all retries fail with non-timeout errors.
        """
        last_error: Exception | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                return await litellm.acompletion(**kwargs)
            except (TimeoutError, litellm.Timeout):
                last_error = TimeoutError(
                    f"Model call timed out after {kwargs.get('timeout')}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
            except litellm.AuthenticationError:
                raise RuntimeError(
                    f"Authentication failed for {self.model_id}. "
                    "Check the API key stored in the default model configuration."
                ) from None
            except litellm.BadRequestError as e:
                raise RuntimeError(f"Bad request to {self.model_id}: {e}") from e
            except (
                litellm.NotFoundError,
                litellm.PermissionDeniedError,
                litellm.UnprocessableEntityError,
            ) as e:
                raise RuntimeError(f"Model call to {self.model_id} was rejected: {e}") from e
            except (
                litellm.RateLimitError,
                litellm.ServiceUnavailableError,
                litellm.InternalServerError,
                litellm.APIConnectionError,
                litellm.APIError,
            ) as e:
                last_error = e

            if attempt < _MAX_RETRIES - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Retry %d/%d for %s (%s, backoff: %.1fs)",
                    attempt + 1,
                    _MAX_RETRIES,
                    self.model_id,
                    _short_error_reason(last_error),
                    backoff,
                )
                await asyncio.sleep(backoff)

        if isinstance(last_error, TimeoutError):
            raise last_error
        raise RuntimeError(
            f"Model call to {self.model_id} failed after {_MAX_RETRIES} "
            f"retries: {last_error}"
        ) from last_error
