"""Decision table for one conversation turn.

Each turn starts in NO_SESSION and moves through the table below on
events raised by the orchestrator. Terminal states are REPLIED (plain
reply, or tool results folded into the reply) and TOOL_UNAVAILABLE
(the model asked for tools but no session exists to run them).
"""

from __future__ import annotations

import logging
from enum import StrEnum

from reqpilot.errors import InvalidTransition

logger = logging.getLogger(__name__)


class ConversationState(StrEnum):
    NO_SESSION = "no_session"
    SESSION_CACHED = "session_cached"
    SESSION_CREATED = "session_created"
    CONFIG_FALLBACK = "config_fallback"
    PLAIN = "plain"
    TOOL_DISPATCH = "tool_dispatch"
    TOOL_UNAVAILABLE = "tool_unavailable"
    REPLIED = "replied"


class ConversationEvent(StrEnum):
    NO_TOOL_CONFIG = "no_tool_config"
    SESSION_FOUND = "session_found"
    SESSION_OPENED = "session_opened"
    CONNECT_FAILED = "connect_failed"
    TOOL_CALLS = "tool_calls"
    TOOL_CALLS_NO_SESSION = "tool_calls_no_session"
    REPLY = "reply"


S = ConversationState
E = ConversationEvent

TRANSITIONS: dict[tuple[ConversationState, ConversationEvent], ConversationState] = {
    (S.NO_SESSION, E.NO_TOOL_CONFIG): S.PLAIN,
    (S.NO_SESSION, E.SESSION_FOUND): S.SESSION_CACHED,
    (S.NO_SESSION, E.SESSION_OPENED): S.SESSION_CREATED,
    (S.NO_SESSION, E.CONNECT_FAILED): S.CONFIG_FALLBACK,
    (S.PLAIN, E.REPLY): S.REPLIED,
    (S.SESSION_CACHED, E.REPLY): S.REPLIED,
    (S.SESSION_CACHED, E.TOOL_CALLS): S.TOOL_DISPATCH,
    (S.SESSION_CREATED, E.REPLY): S.REPLIED,
    (S.SESSION_CREATED, E.TOOL_CALLS): S.TOOL_DISPATCH,
    (S.CONFIG_FALLBACK, E.REPLY): S.REPLIED,
    (S.CONFIG_FALLBACK, E.TOOL_CALLS_NO_SESSION): S.TOOL_UNAVAILABLE,
    (S.TOOL_DISPATCH, E.REPLY): S.REPLIED,
}

TERMINAL_STATES = frozenset({S.REPLIED, S.TOOL_UNAVAILABLE})


def next_state(state: ConversationState, event: ConversationEvent) -> ConversationState:
    """Look up the successor state.

    Raises:
        InvalidTransition: The table has no entry for (state, event).
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(f"No transition from {state} on {event}") from None


class ConversationMachine:
    """Tracks one turn's walk through the table."""

    def __init__(self) -> None:
        self.state = ConversationState.NO_SESSION
        self.trace: list[str] = [self.state.value]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def fire(self, event: ConversationEvent) -> ConversationState:
        new = next_state(self.state, event)
        logger.debug("Conversation %s --%s--> %s", self.state, event, new)
        self.state = new
        self.trace.append(new.value)
        return new
