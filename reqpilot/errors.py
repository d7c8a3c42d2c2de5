"""Exception hierarchy for reqpilot.

Stream errors are raised by the client-side aggregation protocol, tool
errors by the tool-server layer, and ConfigurationError whenever the
default model connection cannot be resolved.
"""

from __future__ import annotations


class ReqpilotError(Exception):
    """Base exception for all application-specific errors."""


# ── Streaming ─────────────────────────────────────────────────────


class StreamError(ReqpilotError):
    """Base class for failures of a streamed request."""


class StreamTransportError(StreamError):
    """The HTTP request failed before any streaming began.

    status_code is None when no response was received at all.
    """

    def __init__(self, status_code: int | None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        status = f" ({status_code})" if status_code is not None else ""
        detail = f": {body}" if body else ""
        super().__init__(f"Request failed{status}{detail}")


class StreamAbsentError(StreamError):
    """A successful response arrived without a readable streaming body."""

    def __init__(self, message: str = "no streaming response received") -> None:
        super().__init__(message)


class StreamRecordError(StreamError):
    """A record in the stream carried an explicit ``error`` field."""


class StreamProtocolError(StreamError):
    """Too many consecutive lines failed to parse as JSON."""


# ── Configuration ─────────────────────────────────────────────────


class ConfigurationError(ReqpilotError):
    """The default model connection is missing or cannot be decrypted."""


# ── Tools ─────────────────────────────────────────────────────────


class ToolError(ReqpilotError):
    """Base class for tool-server failures."""


class ToolConfigError(ToolError):
    """A tool-server configuration was rejected or could not be parsed."""


class ToolExecutionError(ToolError):
    """A tool call returned an error or could not be executed."""


class ToolSessionNotFound(ToolError):
    """The referenced tool-server session does not exist or has expired."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} does not exist or has expired")


# ── Orchestration ─────────────────────────────────────────────────


class InvalidTransition(ReqpilotError):
    """The conversation decision table has no entry for a (state, event) pair."""
