"""Incremental NDJSON decoding.

The game export is one JSON object per line and can run to hundreds of
thousands of lines, so it is never materialised: bytes are decoded as they
arrive and each complete line is yielded as soon as it is parsed. Between
reads the decoder keeps nothing but the trailing incomplete line.

Lines are split on the raw newline byte, which never occurs inside a
multi-byte UTF-8 sequence, and each line is decoded strictly on its own: a
line with invalid UTF-8 is skipped like any other undecodable record.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger("openingrec.ingestion.stream")

Record = Dict[str, Any]


class NdjsonDecoder:
    """Pull-based decoder: `feed()` bytes, iterate the records it returns."""

    def __init__(self) -> None:
        self._buffer = b""
        self.num_decoded = 0
        self.num_skipped = 0

    @property
    def buffered_bytes(self) -> int:
        """Size of the retained fragment (the only state kept between reads)."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[Record]:
        self._buffer += chunk
        if b"\n" not in self._buffer:
            return iter(())
        lines = self._buffer.split(b"\n")
        # Keep last incomplete line in buffer
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> Iterator[Record]:
        """Give whatever is left one final decode attempt."""
        tail, self._buffer = self._buffer, b""
        return self._decode_lines([tail])

    def _decode_lines(self, lines: List[bytes]) -> Iterator[Record]:
        for line in lines:
            record = self._decode_line(line)
            if record is not None:
                yield record

    def _decode_line(self, line: bytes) -> Optional[Record]:
        trimmed = line.strip()
        if not trimmed:
            return None
        try:
            value = json.loads(trimmed.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.num_skipped += 1
            logger.warning(f"Skipping undecodable record ({len(trimmed)} bytes): {e}")
            return None
        if not isinstance(value, dict):
            self.num_skipped += 1
            logger.warning(f"Skipping non-object record of type {type(value).__name__}")
            return None
        self.num_decoded += 1
        return value


def decode_chunks(chunks: Iterable[bytes]) -> Iterator[Record]:
    """Synchronous counterpart of `iter_ndjson`."""
    decoder = NdjsonDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()


async def iter_ndjson(chunks: AsyncIterable[bytes]) -> AsyncIterator[Record]:
    """Yield records from an async byte stream (e.g. `response.aiter_bytes()`)."""
    decoder = NdjsonDecoder()
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
    for record in decoder.flush():
        yield record
