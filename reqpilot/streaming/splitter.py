"""Newline splitting of decoded stream text.

Complete lines are released in arrival order; the trailing partial line
is retained until its newline arrives or the stream ends.
"""

from __future__ import annotations


class LineSplitter:
    """Split decoded text into non-blank, whitespace-trimmed lines."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The unterminated tail carried over to the next fragment."""
        return self._buffer

    def feed(self, text: str) -> list[str]:
        """Append a fragment and return every line it completes."""
        if not text:
            return []
        self._buffer += text
        *complete, self._buffer = self._buffer.split("\n")
        return [line.strip() for line in complete if line.strip()]

    def flush(self) -> str | None:
        """Release the trailing partial line once, at end of stream."""
        tail = self._buffer.strip()
        self._buffer = ""
        return tail or None
