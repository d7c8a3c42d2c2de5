"""Conversation orchestration: config cache, decision table, orchestrator."""

from reqpilot.orchestration.config_cache import DefaultConfigCache
from reqpilot.orchestration.conversation import ConversationOrchestrator, build_system_prompt
from reqpilot.orchestration.states import (
    ConversationEvent,
    ConversationMachine,
    ConversationState,
    next_state,
)

__all__ = [
    "ConversationEvent",
    "ConversationMachine",
    "ConversationOrchestrator",
    "ConversationState",
    "DefaultConfigCache",
    "build_system_prompt",
    "next_state",
]
