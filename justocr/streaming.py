"""
Incremental NDJSON decoding.

The mediated benchmark response is a stream of newline-delimited JSON
objects. The transport may split or merge lines arbitrarily, including in
the middle of a multi-byte UTF-8 character, so bytes are buffered until a
full line is available.
"""

import json
import logging
from typing import AsyncIterable, AsyncIterator, Dict, List, Any


class NDJSONDecoder:
    """Reassembles JSON objects from arbitrarily chunked bytes."""

    def __init__(self):
        self._buffer = b""

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """Add bytes and return every object completed by them."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        return [event for event in map(self._parse, lines) if event is not None]

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""
        remainder, self._buffer = self._buffer, b""
        event = self._parse(remainder)
        return [event] if event is not None else []

    @staticmethod
    def _parse(line: bytes):
        line = line.strip()
        if not line:
            return None
        try:
            event = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logging.warning(f"Skipping malformed stream line: {e}")
            return None
        if not isinstance(event, dict):
            logging.warning(f"Skipping non-object stream line: {line[:80]!r}")
            return None
        return event


async def iter_ndjson(chunks: AsyncIterable[bytes]) -> AsyncIterator[Dict[str, Any]]:
    """Yield decoded objects from an async byte stream as they complete."""
    decoder = NDJSONDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event


def encode_event(event: Dict[str, Any]) -> bytes:
    """One NDJSON line."""
    return (json.dumps(event, ensure_ascii=False) + "\n").encode("utf-8")


__all__ = [
    'NDJSONDecoder',
    'iter_ndjson',
    'encode_event',
]
