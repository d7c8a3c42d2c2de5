"""Incremental UTF-8 decoding of raw response chunks.

A chunk boundary may fall inside a multi-byte character, so decoder state
is carried across calls instead of decoding each chunk in isolation.
"""

from __future__ import annotations

import codecs


class ChunkDecoder:
    """Stateful bytes-to-text decoder for one stream.

    Malformed byte sequences become U+FFFD instead of raising.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def decode(self, chunk: bytes) -> str:
        """Decode one chunk, holding back any incomplete trailing character."""
        return self._decoder.decode(chunk)

    def flush(self) -> str:
        """Emit whatever is held back at end of stream."""
        return self._decoder.decode(b"", final=True)
