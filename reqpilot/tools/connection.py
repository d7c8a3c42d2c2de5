"""Tool-server connections over the Model Context Protocol.

Each session runs in its own asyncio task that owns the transport and
ClientSession contexts for their whole lifetime. Tool calls are handed
to that task through a queue, so the contexts are always entered and
exited by the same task.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import Any, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from pydantic import BaseModel, Field

from reqpilot.errors import ToolError, ToolExecutionError, ToolSessionNotFound
from reqpilot.schemas.conversation import ToolSpec
from reqpilot.tools.config import ServerSpec, default_description

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 30.0
_CALL_TIMEOUT = 120.0
_CLOSE_TIMEOUT = 5.0


class ToolSession(BaseModel):
    """A live tool-server session and the tools it advertises."""

    session_id: str
    server_name: str = ""
    tools: list[ToolSpec] = Field(default_factory=list)


class ToolServer(Protocol):
    """What the orchestrator needs from a tool-server backend."""

    async def connect(self, server: ServerSpec) -> ToolSession: ...

    async def call_tool(self, session_id: str, name: str, arguments: Any) -> str: ...

    async def close(self, session_id: str) -> None: ...

    async def close_all(self) -> None: ...


def result_text(result: Any) -> str:
    """Flatten a CallToolResult's content blocks to text."""
    parts: list[str] = []
    for block in getattr(result, "content", None) or []:
        if getattr(block, "type", "") == "text":
            parts.append(block.text)
        else:
            parts.append(f"[{getattr(block, 'type', 'unknown')} content]")
    return "\n".join(parts)


@dataclass
class _Runner:
    task: asyncio.Task
    requests: asyncio.Queue
    server_name: str
    tools: list[ToolSpec] = field(default_factory=list)


class McpToolServer:
    """ToolServer backed by the ``mcp`` client SDK.

    Args:
        connect_timeout: Seconds allowed for launch, handshake and tool listing.
        call_timeout: Seconds allowed for a single tool call.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = _CONNECT_TIMEOUT,
        call_timeout: float = _CALL_TIMEOUT,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._call_timeout = call_timeout
        self._runners: dict[str, _Runner] = {}

    @property
    def session_ids(self) -> list[str]:
        return list(self._runners)

    async def connect(self, server: ServerSpec) -> ToolSession:
        """Launch (or reach) the server, handshake, and list its tools.

        Raises:
            ToolError: The server could not be started or did not answer.
        """
        session_id = f"mcp-{uuid.uuid4().hex[:12]}"
        loop = asyncio.get_running_loop()
        ready: asyncio.Future = loop.create_future()
        requests: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(
            self._run(server, ready, requests), name=f"tool-server-{session_id}",
        )

        try:
            tools = await asyncio.wait_for(ready, timeout=self._connect_timeout)
        except TimeoutError as e:
            await _cancel(task)
            raise ToolError(
                f"Tool server '{server.name}' did not respond within {self._connect_timeout:.0f}s"
            ) from e
        except Exception as e:
            await _cancel(task)
            raise ToolError(f"Failed to connect to tool server '{server.name}': {e}") from e

        self._runners[session_id] = _Runner(
            task=task, requests=requests, server_name=server.name, tools=tools,
        )
        logger.info(
            "Tool server '%s' connected as %s with %d tools",
            server.name, session_id, len(tools),
        )
        return ToolSession(session_id=session_id, server_name=server.name, tools=tools)

    async def call_tool(self, session_id: str, name: str, arguments: Any) -> str:
        """Invoke one tool and return its text output.

        Raises:
            ToolSessionNotFound: No live session with this id.
            ToolExecutionError: The tool reported an error, timed out, or
                the session failed during the call.
        """
        runner = self._runners.get(session_id)
        if runner is None or runner.task.done():
            raise ToolSessionNotFound(session_id)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await runner.requests.put((name, arguments if isinstance(arguments, dict) else {}, future))
        try:
            result = await asyncio.wait_for(future, timeout=self._call_timeout)
        except TimeoutError as e:
            raise ToolExecutionError(f"Tool {name} timed out after {self._call_timeout:.0f}s") from e
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"Tool {name} raised: {e}") from e

        text = result_text(result)
        if getattr(result, "isError", False):
            raise ToolExecutionError(text or f"Tool {name} reported an error")
        logger.debug("Tool %s on %s returned %d chars", name, session_id, len(text))
        return text

    async def close(self, session_id: str) -> None:
        """Shut down one session; unknown ids are ignored."""
        runner = self._runners.pop(session_id, None)
        if runner is None:
            return
        await runner.requests.put(None)
        try:
            await asyncio.wait_for(runner.task, timeout=_CLOSE_TIMEOUT)
        except TimeoutError:
            logger.warning("Tool server session %s did not shut down cleanly", session_id)
        logger.info("Closed tool server session %s", session_id)

    async def close_all(self) -> None:
        for session_id in list(self._runners):
            await self.close(session_id)

    # ── Session task ──────────────────────────────────────────

    @asynccontextmanager
    async def _open_transport(self, server: ServerSpec) -> AsyncIterator[tuple[Any, Any]]:
        if server.url:
            async with streamablehttp_client(server.url) as (read, write, _):
                yield read, write
        else:
            params = StdioServerParameters(
                command=server.command, args=server.args, env=server.env,
            )
            async with stdio_client(params) as (read, write):
                yield read, write

    async def _run(
        self,
        server: ServerSpec,
        ready: asyncio.Future,
        requests: asyncio.Queue,
    ) -> None:
        try:
            async with self._open_transport(server) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    listed = await session.list_tools()
                    tools = [
                        ToolSpec(
                            name=tool.name,
                            description=tool.description or default_description(tool.name),
                            input_schema=tool.inputSchema or {},
                        )
                        for tool in listed.tools
                    ]
                    if ready.done():
                        return
                    ready.set_result(tools)
                    await self._serve(session, requests)
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.warning("Tool server '%s' session ended: %s", server.name, e)
        finally:
            _fail_pending(requests)

    async def _serve(self, session: ClientSession, requests: asyncio.Queue) -> None:
        while True:
            item = await requests.get()
            if item is None:
                return
            name, arguments, future = item
            try:
                result = await session.call_tool(name, arguments)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
                continue
            if not future.done():
                future.set_result(result)


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


def _fail_pending(requests: asyncio.Queue) -> None:
    while not requests.empty():
        item = requests.get_nowait()
        if item is not None and not item[2].done():
            item[2].set_exception(ToolExecutionError("Tool server session closed"))
