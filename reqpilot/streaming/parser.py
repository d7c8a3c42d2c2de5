"""Lenient JSON record parsing for newline-delimited streams.

Lines that fail to parse are treated as noise: they are logged and
skipped, never fatal. Servers that frame records as server-sent events
(``data: {...}``) are accepted too, and the ``[DONE]`` sentinel is
ignored. A caller may opt into a stricter policy by capping the number
of consecutive unparseable lines.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from reqpilot.errors import StreamProtocolError

logger = logging.getLogger(__name__)

_SSE_DATA_PREFIX = "data:"
_SSE_CONTROL_PREFIXES = ("event:", "id:", "retry:", ":")
_DONE_SENTINEL = "[DONE]"


def _is_truncated(error: json.JSONDecodeError) -> bool:
    """True when the decoder ran out of input rather than hitting bad input."""
    return (
        error.pos >= len(error.doc.rstrip())
        or error.msg.startswith("Unterminated string")
    )


class RecordParser:
    """Parse one stream line into a JSON object, or None for noise.

    Args:
        max_consecutive_failures: When set, raise StreamProtocolError after
            this many unparseable lines in a row. None keeps the lenient
            behaviour of skipping every bad line.
    """

    def __init__(self, max_consecutive_failures: int | None = None) -> None:
        self._max_failures = max_consecutive_failures
        self._consecutive_failures = 0
        self.parsed = 0
        self.skipped = 0

    def parse(self, line: str) -> dict[str, Any] | None:
        payload = line.strip()
        if payload.startswith(_SSE_DATA_PREFIX):
            payload = payload[len(_SSE_DATA_PREFIX):].strip()
        elif payload.startswith(_SSE_CONTROL_PREFIXES):
            return None

        if not payload or payload == _DONE_SENTINEL:
            return None

        try:
            value = json.loads(payload)
        except json.JSONDecodeError as e:
            if _is_truncated(e):
                logger.debug("Skipping truncated stream fragment: %.80s", payload)
            else:
                logger.warning("Skipping malformed stream line (%s): %.80s", e.msg, payload)
            self._record_failure()
            return None

        if not isinstance(value, dict):
            logger.warning(
                "Skipping stream line: expected JSON object, got %s", type(value).__name__
            )
            self._record_failure()
            return None

        self._consecutive_failures = 0
        self.parsed += 1
        return value

    def _record_failure(self) -> None:
        self.skipped += 1
        self._consecutive_failures += 1
        if self._max_failures is not None and self._consecutive_failures >= self._max_failures:
            raise StreamProtocolError(
                f"{self._consecutive_failures} consecutive stream lines could not be parsed"
            )
