"""Parsing and validation of a member's tool-server configuration.

A configuration is JSON text of the form::

    {
      "mcpServers": {"youtube": {"command": "npx", "args": ["-y", "pkg"]}},
      "tools": ["get_transcript", {"name": "search", "description": "..."}]
    }

Only the first ``mcpServers`` entry is used. A server may instead give a
``url`` to reach a streamable-HTTP tool server.
"""

from __future__ import annotations

import json
import logging
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from reqpilot.errors import ToolConfigError
from reqpilot.schemas.conversation import ToolSpec

logger = logging.getLogger(__name__)


class ServerSpec(BaseModel):
    """How to launch or reach one tool server."""

    name: str
    command: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] | None = None
    url: str = ""


class ToolConfig(BaseModel):
    """A parsed member tool configuration."""

    server: ServerSpec | None = None
    tools: list[ToolSpec] = Field(default_factory=list)


def default_description(name: str) -> str:
    return f"Use the {name} tool"


def normalise_tools(entries: list[Any]) -> list[ToolSpec]:
    """Turn tool entries (bare names or objects) into ToolSpecs.

    Entries without a usable name are dropped.
    """
    tools: list[ToolSpec] = []
    for entry in entries:
        if isinstance(entry, str) and entry:
            tools.append(ToolSpec(name=entry, description=default_description(entry)))
        elif isinstance(entry, dict) and entry.get("name"):
            name = str(entry["name"])
            schema = entry.get("inputSchema") or entry.get("input_schema") or {}
            tools.append(ToolSpec(
                name=name,
                description=entry.get("description") or default_description(name),
                input_schema=schema if isinstance(schema, dict) else {},
            ))
        else:
            logger.debug("Ignoring malformed tool entry: %r", entry)
    return tools


def parse_tool_config(raw: str) -> ToolConfig:
    """Parse a member's tool configuration text.

    Raises:
        ToolConfigError: The text is not a JSON object, or the server
            entry is malformed.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolConfigError(f"Tool configuration is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ToolConfigError("Tool configuration must be a JSON object")

    server = None
    servers = data.get("mcpServers")
    if isinstance(servers, dict) and servers:
        name, entry = next(iter(servers.items()))
        if not isinstance(entry, dict):
            raise ToolConfigError(f"Server entry '{name}' must be an object")
        try:
            server = ServerSpec(name=name, **entry)
        except (TypeError, ValidationError) as e:
            raise ToolConfigError(f"Invalid server entry '{name}': {e}") from e
        if len(servers) > 1:
            logger.info("Tool configuration lists %d servers; using '%s'", len(servers), name)

    tools = data.get("tools")
    return ToolConfig(
        server=server,
        tools=normalise_tools(tools) if isinstance(tools, list) else [],
    )


def validate_server_config(
    server: ServerSpec,
    allowed_commands: list[str],
    npm_allowlist: list[str],
) -> None:
    """Reject servers that would launch an arbitrary process.

    The command's basename must be in allowed_commands, and ``npx -y
    <package>`` is only allowed for packages on the npm allowlist (``*``
    allows any package).

    Raises:
        ToolConfigError: The server is not permitted.
    """
    if server.url:
        if not server.url.startswith(("http://", "https://")):
            raise ToolConfigError(f"Unsupported tool server URL: {server.url}")
        return

    if not server.command:
        raise ToolConfigError("Invalid server configuration: command is required")

    base = PurePath(server.command).name.lower()
    if base not in allowed_commands:
        raise ToolConfigError(
            f"Unsupported command: {server.command}. "
            f"Allowed: {', '.join(allowed_commands)}"
        )

    if base == "npx" and "*" not in npm_allowlist:
        if len(server.args) >= 2 and server.args[0] == "-y":
            package = server.args[1]
            if package not in npm_allowlist:
                raise ToolConfigError(f'Package "{package}" is not on the allowlist')
