"""
Line reframer: turns arbitrarily split chunks into complete lines.

The reframer knows nothing about JSON.  It keeps exactly one pending
fragment (the text after the last newline) between calls, so one instance
belongs to one stream and must not be shared.
"""

from __future__ import annotations

import codecs
from typing import Iterable, Iterator


class LineReframer:
    """Reassemble newline-terminated lines from a chunked text stream."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._fragment = ""

    @property
    def pending(self) -> str:
        """Text received since the last newline."""
        return self._fragment

    def feed(self, chunk: bytes | str) -> list[str]:
        """Add a chunk and return every line it completed, in order."""
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        if not chunk:
            return []
        parts = (self._fragment + chunk).split("\n")
        self._fragment = parts.pop()
        return [_strip_cr(p) for p in parts]

    def finish(self) -> list[str]:
        """Flush at end of stream; an unterminated last line is still a line."""
        tail = self._decoder.decode(b"", final=True)
        lines = self.feed(tail) if tail else []
        if self._fragment:
            lines.append(_strip_cr(self._fragment))
        self._fragment = ""
        return lines

    def discard(self) -> None:
        """Drop the pending fragment and any buffered partial characters."""
        self._fragment = ""
        self._decoder.reset()


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def iter_lines(chunks: Iterable[bytes | str],
               encoding: str = "utf-8") -> Iterator[str]:
    """Lazily yield complete lines from ``chunks`` using a fresh reframer."""
    reframer = LineReframer(encoding)
    for chunk in chunks:
        yield from reframer.feed(chunk)
    yield from reframer.finish()
