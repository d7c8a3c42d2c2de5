"""Server side of the stream wire format.

Turns a provider's token stream into newline-delimited JSON records:
``{"content": delta}`` or ``{"reasoning": delta}`` per increment, and a
single ``{"error": message}`` record if the provider fails mid-stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from reqpilot.schemas.streaming import StreamDelta

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def encode_record(record: dict[str, Any]) -> bytes:
    """Serialize one record as a UTF-8 NDJSON line."""
    return (json.dumps(record, ensure_ascii=False) + "\n").encode("utf-8")


async def relay_ndjson(deltas: AsyncIterable[StreamDelta]) -> AsyncIterator[bytes]:
    """Yield one encoded record per non-empty delta.

    Any exception raised by the provider stream is reported in-band as a
    final error record; the HTTP status has already been sent.
    """
    count = 0
    try:
        async for delta in deltas:
            if not delta.text:
                continue
            count += 1
            yield encode_record({delta.field: delta.text})
    except Exception as e:
        logger.exception("Provider stream failed after %d records", count)
        yield encode_record({"error": str(e) or type(e).__name__})
        return
    logger.debug("Relayed %d stream records", count)
