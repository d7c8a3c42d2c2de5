"""Stream session: the Streamed Text Aggregation Protocol end to end.

A StreamSession owns one request's decoder, line splitter, record parser
and accumulator. Raw byte chunks go in through feed(); finish() resolves
the session to a StreamResult or re-raises the error that failed it.

Progress is reported after every accumulation step with the full
cumulative text for the field, so display code can re-render statelessly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Callable, Sequence
from typing import Any

from reqpilot.errors import StreamError
from reqpilot.schemas.streaming import StreamChunk, StreamResult, TerminalState
from reqpilot.streaming.accumulator import FieldAccumulator
from reqpilot.streaming.decoder import ChunkDecoder
from reqpilot.streaming.parser import RecordParser
from reqpilot.streaming.splitter import LineSplitter

logger = logging.getLogger(__name__)

# Receives a StreamChunk; may be sync or async
ChunkCallback = Callable[[StreamChunk], Any]

# Receives the cumulative text of a single field; may be sync or async
ProgressCallback = Callable[[str], Any]


class StreamSession:
    """One in-flight streamed request.

    Args:
        fields: Field names to accumulate. The first is the primary field
            returned by StreamResult.text.
        on_chunk: Optional callback invoked with a StreamChunk after each
            accumulation step, and once per field with is_complete=True
            when the stream completes. Exceptions raised by the callback
            propagate to the caller.
        max_consecutive_failures: Optional parse-failure cap, see RecordParser.
    """

    def __init__(
        self,
        fields: Sequence[str] = ("content",),
        *,
        on_chunk: ChunkCallback | None = None,
        max_consecutive_failures: int | None = None,
    ) -> None:
        self._decoder = ChunkDecoder()
        self._splitter = LineSplitter()
        self._parser = RecordParser(max_consecutive_failures)
        self._accumulator = FieldAccumulator(fields)
        self._on_chunk = on_chunk
        self._state = TerminalState.ACTIVE
        self._failure: StreamError | None = None
        self._result: StreamResult | None = None

    @property
    def state(self) -> TerminalState:
        return self._state

    @property
    def failure_reason(self) -> str:
        return str(self._failure) if self._failure else ""

    @property
    def accumulated(self) -> dict[str, str]:
        """Running totals so far (empty strings after a failure)."""
        return self._accumulator.values

    async def feed(self, chunk: bytes | str) -> None:
        """Consume one raw chunk from the response body."""
        self._raise_if_terminal()
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        for line in self._splitter.feed(self._decoder.decode(chunk)):
            await self._process_line(line)

    async def finish(self) -> StreamResult:
        """Resolve the session at end of data.

        The final unterminated line, if any, is parsed as a best-effort
        completion before the session transitions to COMPLETED.

        Raises:
            StreamError: The error that previously failed the session.
        """
        if self._failure is not None:
            raise self._failure
        if self._result is not None:
            return self._result

        for line in self._splitter.feed(self._decoder.flush()):
            await self._process_line(line)
        tail = self._splitter.flush()
        if tail is not None:
            await self._process_line(tail)

        self._state = TerminalState.COMPLETED
        self._result = StreamResult(
            fields=self._accumulator.values,
            primary_field=self._accumulator.fields[0],
            records=self._parser.parsed,
            skipped_lines=self._parser.skipped,
        )
        logger.debug(
            "Stream completed: %d records, %d skipped lines",
            self._result.records, self._result.skipped_lines,
        )

        for field, text in self._result.fields.items():
            await self._emit(StreamChunk(field=field, delta="", accumulated=text, is_complete=True))
        return self._result

    def abort(self, reason: str = "stream aborted") -> None:
        """Stop the session early, discarding partial text."""
        if self._state is TerminalState.ACTIVE:
            self._fail(StreamError(reason))

    async def _process_line(self, line: str) -> None:
        try:
            record = self._parser.parse(line)
            if record is None:
                return
            updates = self._accumulator.apply(record)
        except StreamError as e:
            self._fail(e)
            raise

        for field, delta in updates.items():
            await self._emit(
                StreamChunk(field=field, delta=delta, accumulated=self._accumulator.value(field))
            )

    async def _emit(self, chunk: StreamChunk) -> None:
        if self._on_chunk is None:
            return
        result = self._on_chunk(chunk)
        if asyncio.iscoroutine(result):
            await result

    def _fail(self, error: StreamError) -> None:
        self._state = TerminalState.FAILED
        self._failure = error
        self._accumulator.reset()
        logger.info("Stream failed: %s", error)

    def _raise_if_terminal(self) -> None:
        if self._failure is not None:
            raise self._failure
        if self._state is TerminalState.COMPLETED:
            raise StreamError("Stream session already completed")


def text_progress(on_progress: ProgressCallback) -> ChunkCallback:
    """Adapt a cumulative-text callback to the StreamChunk interface."""

    def on_chunk(chunk: StreamChunk) -> Any:
        if chunk.is_complete:
            return None
        return on_progress(chunk.accumulated)

    return on_chunk


async def aggregate_stream(
    chunks: AsyncIterable[bytes],
    fields: Sequence[str] = ("content",),
    *,
    on_chunk: ChunkCallback | None = None,
    max_consecutive_failures: int | None = None,
) -> StreamResult:
    """Consume an async byte stream and return the accumulated fields.

    Raises:
        StreamRecordError: If a record carried an ``error`` field.
        StreamProtocolError: If the parse-failure cap was reached.
    """
    session = StreamSession(
        fields, on_chunk=on_chunk, max_consecutive_failures=max_consecutive_failures,
    )
    try:
        async for chunk in chunks:
            await session.feed(chunk)
    except asyncio.CancelledError:
        session.abort()
        raise
    return await session.finish()


async def aggregate_text(
    chunks: AsyncIterable[bytes],
    field: str = "content",
    *,
    on_progress: ProgressCallback | None = None,
    max_consecutive_failures: int | None = None,
) -> str:
    """Single-field variant of aggregate_stream returning the final text."""
    result = await aggregate_stream(
        chunks,
        (field,),
        on_chunk=text_progress(on_progress) if on_progress else None,
        max_consecutive_failures=max_consecutive_failures,
    )
    return result.text
