"""HTTP client for newline-delimited JSON streaming endpoints.

Issues a POST with httpx, feeds the response body into a StreamSession
chunk by chunk, and resolves to the accumulated text. Transport failures
and missing bodies are reported as distinct errors before any record is
parsed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from reqpilot.errors import StreamAbsentError, StreamTransportError
from reqpilot.schemas.streaming import StreamResult
from reqpilot.streaming.accumulator import error_message
from reqpilot.streaming.session import (
    ChunkCallback,
    ProgressCallback,
    StreamSession,
    text_progress,
)

logger = logging.getLogger(__name__)

_STREAM_HEADERS = {"Accept": "application/x-ndjson, text/event-stream"}


def _error_detail(body: str) -> str:
    """Pull a readable message out of an error response body."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body.strip()[:500]
    if isinstance(data, dict):
        for key in ("error", "detail", "message"):
            if data.get(key):
                return error_message(data[key])
    return body.strip()[:500]


class StreamClient:
    """Consume streamed text from an HTTP endpoint.

    Usage:
        async with StreamClient("http://localhost:8000") as client:
            text = await client.stream_text(
                "/api/ai/stream", {"prompt": "..."}, on_progress=print,
            )

    Args:
        base_url: Prefix for request paths.
        client: Optional pre-built httpx.AsyncClient (not closed by us).
        timeout: Read timeout in seconds when we build the client.
        max_consecutive_failures: Optional parse-failure cap per stream.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
        max_consecutive_failures: int | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout, connect=10.0),
        )
        self._max_failures = max_consecutive_failures

    async def __aenter__(self) -> StreamClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def stream_fields(
        self,
        path: str,
        payload: dict[str, Any],
        fields: Sequence[str] = ("content",),
        *,
        on_chunk: ChunkCallback | None = None,
        headers: dict[str, str] | None = None,
    ) -> StreamResult:
        """POST payload and aggregate the streamed response.

        Raises:
            StreamTransportError: Non-2xx status, or the request never
                reached the server.
            StreamAbsentError: 2xx response with an empty body.
            StreamRecordError: A record carried an ``error`` field.
        """
        session = StreamSession(
            fields, on_chunk=on_chunk, max_consecutive_failures=self._max_failures,
        )
        request_headers = _STREAM_HEADERS | (headers or {})

        try:
            async with self._client.stream(
                "POST", path, json=payload, headers=request_headers,
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning("Stream request to %s failed (%d)", path, response.status_code)
                    raise StreamTransportError(response.status_code, _error_detail(body))

                received = False
                async for chunk in response.aiter_bytes():
                    if not chunk:
                        continue
                    received = True
                    await session.feed(chunk)
        except httpx.TransportError as e:
            raise StreamTransportError(None, str(e) or type(e).__name__) from e

        if not received:
            raise StreamAbsentError()
        return await session.finish()

    async def stream_text(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        field: str = "content",
        on_progress: ProgressCallback | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """Single-field variant of stream_fields returning the final text."""
        result = await self.stream_fields(
            path,
            payload,
            (field,),
            on_chunk=text_progress(on_progress) if on_progress else None,
            headers=headers,
        )
        return result.text
