"""
Replay transport: serves pre-recorded producer output as a chunk stream.

Useful for feeding a saved ``.jsonl`` response back through a session, and
for driving sessions in tests without a network.
"""

import threading
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .base import ChunkStream, Transport, TransportError
from ..mode import GenerationRequest


class ReplayChunkStream(ChunkStream):

    def __init__(self, chunks: Iterable[bytes | str],
                 fail_after: Optional[int] = None):
        self._chunks = chunks
        self._fail_after = fail_after
        self._closed = threading.Event()

    def __iter__(self) -> Iterator[bytes | str]:
        for index, chunk in enumerate(self._chunks):
            if self._closed.is_set():
                return
            if self._fail_after is not None and index >= self._fail_after:
                raise TransportError("Stream interrupted: connection reset")
            yield chunk
        if self._fail_after is not None and not self._closed.is_set():
            raise TransportError("Stream interrupted: connection reset")

    def close(self) -> None:
        self._closed.set()


class ReplayTransport(Transport):
    """Replays ``chunks`` for every ``open`` call.

    ``fail_after`` simulates a dropped connection after that many chunks.
    The requests it was opened with are kept in ``requests`` in call order.
    """

    def __init__(self, chunks: Iterable[bytes | str],
                 fail_after: Optional[int] = None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.requests: list[GenerationRequest] = []

    @classmethod
    def from_file(cls, path: str, chunk_size: int = 64) -> "ReplayTransport":
        data = Path(path).read_bytes()
        return cls.from_bytes(data, chunk_size=chunk_size)

    @classmethod
    def from_bytes(cls, data: bytes, chunk_size: int = 64) -> "ReplayTransport":
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        return cls([data[i:i + chunk_size]
                    for i in range(0, len(data), chunk_size)])

    def open(self, request: GenerationRequest) -> ReplayChunkStream:
        self.requests.append(request)
        return ReplayChunkStream(self.chunks, fail_after=self.fail_after)
