"""Streamed Text Aggregation Protocol.

Client-side reconstruction of newline-delimited JSON text streams
(decoder -> line splitter -> record parser -> accumulator -> progress
callback -> terminal resolution), plus the server-side relay that
produces the same wire format.
"""

from reqpilot.streaming.client import StreamClient
from reqpilot.streaming.relay import encode_record, relay_ndjson
from reqpilot.streaming.session import StreamSession, aggregate_stream, aggregate_text

__all__ = [
    "StreamClient",
    "StreamSession",
    "aggregate_stream",
    "aggregate_text",
    "encode_record",
    "relay_ndjson",
]
