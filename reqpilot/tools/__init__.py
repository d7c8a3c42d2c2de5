"""Tool-server configuration, connections, and session registry."""

from reqpilot.tools.config import ServerSpec, ToolConfig, parse_tool_config, validate_server_config
from reqpilot.tools.connection import McpToolServer, ToolServer, ToolSession
from reqpilot.tools.registry import SessionEntry, SessionRegistry

__all__ = [
    "McpToolServer",
    "ServerSpec",
    "SessionEntry",
    "SessionRegistry",
    "ToolConfig",
    "ToolServer",
    "ToolSession",
    "parse_tool_config",
    "validate_server_config",
]
