"""In-memory registry of conversation sessions.

A session ties a tool-server connection to what the orchestrator needs
to reuse it on later turns: the system prompt, the formatted tool list,
and the member it was opened for. Entries expire after an idle period
or a maximum lifetime and are swept periodically.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from reqpilot.schemas.conversation import MemberInfo, ToolSpec

logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    """Cached state for one conversation session."""

    session_id: str
    system_prompt: str = ""
    tools: list[ToolSpec] = field(default_factory=list)
    member: MemberInfo | None = None
    started_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)

    def to_summary(self, now: float | None = None) -> dict[str, Any]:
        now = time.monotonic() if now is None else now
        return {
            "sessionId": self.session_id,
            "member": self.member.name if self.member else None,
            "tools": [tool.name for tool in self.tools],
            "idleSeconds": int(now - self.last_used),
            "ageSeconds": int(now - self.started_at),
        }


class SessionRegistry:
    """Session entries with idle and lifetime expiry.

    Args:
        idle_seconds: Expire entries unused for this long.
        lifetime_seconds: Expire entries older than this regardless of use.
    """

    def __init__(self, idle_seconds: float = 30 * 60, lifetime_seconds: float = 2 * 60 * 60) -> None:
        self._idle = idle_seconds
        self._lifetime = lifetime_seconds
        self._entries: dict[str, SessionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def register(self, entry: SessionEntry) -> SessionEntry:
        self._entries[entry.session_id] = entry
        return entry

    def get(self, session_id: str | None, now: float | None = None) -> SessionEntry | None:
        """Return a live entry and mark it used; expired entries read as absent."""
        if not session_id:
            return None
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        now = time.monotonic() if now is None else now
        if self._is_expired(entry, now):
            return None
        entry.last_used = now
        return entry

    def remove(self, session_id: str) -> SessionEntry | None:
        return self._entries.pop(session_id, None)

    def entries(self) -> list[SessionEntry]:
        return list(self._entries.values())

    def expired(self, now: float | None = None) -> list[str]:
        now = time.monotonic() if now is None else now
        return [sid for sid, entry in self._entries.items() if self._is_expired(entry, now)]

    async def sweep(self, tool_server: Any, now: float | None = None) -> list[str]:
        """Remove expired entries and close their tool-server sessions."""
        removed = self.expired(now)
        for session_id in removed:
            self._entries.pop(session_id, None)
            try:
                await tool_server.close(session_id)
            except Exception:
                logger.exception("Failed to close expired session %s", session_id)
        if removed:
            logger.info("Swept %d expired sessions, %d remain", len(removed), len(self._entries))
        return removed

    def _is_expired(self, entry: SessionEntry, now: float) -> bool:
        return now - entry.last_used > self._idle or now - entry.started_at > self._lifetime
