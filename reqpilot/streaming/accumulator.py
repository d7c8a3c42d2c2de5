"""Per-field text accumulation for parsed stream records.

Each watched field keeps its own running total. Values are appended,
never replaced: the server is expected to send incremental deltas.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from reqpilot.errors import StreamRecordError

# Typed records ({"type": "answer", "content": ...}) use these aliases
_TYPE_ALIASES = {"answer": "content"}


def error_message(error: Any) -> str:
    """Render the value of a record's ``error`` field as a message."""
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


class FieldAccumulator:
    """Accumulate text for a fixed set of field names.

    Three record shapes are understood:

    - flat: ``{"content": "...", "reasoning": "..."}``: every watched
      field present in the record is updated;
    - typed: ``{"type": "reasoning", "content": "..."}``: the field named
      by ``type`` receives ``content``, and nothing else is read
      from it;
    - OpenAI chunk: ``{"choices": [{"delta": {"content": "..."}}]}``:
      ``delta.content`` feeds ``content`` and ``delta.reasoning_content``
      feeds ``reasoning``.
    """

    def __init__(self, fields: Sequence[str]) -> None:
        if not fields:
            raise ValueError("At least one field must be watched")
        self._values: dict[str, str] = dict.fromkeys(fields, "")

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self._values)

    @property
    def values(self) -> dict[str, str]:
        """Snapshot of the running totals."""
        return dict(self._values)

    def value(self, field: str) -> str:
        return self._values[field]

    def apply(self, record: dict[str, Any]) -> dict[str, str]:
        """Fold one record into the running totals.

        Returns:
            Mapping of each updated field to the delta that was appended.

        Raises:
            StreamRecordError: If the record carries a truthy ``error`` field.
                Nothing from that record is accumulated.
        """
        error = record.get("error")
        if error:
            raise StreamRecordError(error_message(error))

        updates: dict[str, str] = {}
        for field, delta in self._extract(record):
            if field in self._values and isinstance(delta, str) and delta:
                self._values[field] += delta
                updates[field] = updates.get(field, "") + delta
        return updates

    def reset(self) -> None:
        """Discard everything accumulated so far."""
        self._values = dict.fromkeys(self._values, "")

    def _extract(self, record: dict[str, Any]) -> Iterator[tuple[str, Any]]:
        record_type = record.get("type")
        if isinstance(record_type, str) and record_type:
            target = _TYPE_ALIASES.get(record_type, record_type)
            if target in self._values:
                yield target, record.get("content")
            return

        for field in self._values:
            if field in record:
                yield field, record[field]

        choices = record.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta") or {}
            yield "content", delta.get("content")
            yield "reasoning", delta.get("reasoning_content")
