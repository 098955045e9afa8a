from abc import ABC, abstractmethod
from typing import Iterator, Optional

from ..mode import GenerationRequest


class TransportError(Exception):
    """Raised when the byte stream cannot be opened or breaks mid-way."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChunkStream(ABC):
    """An open response body, consumed chunk by chunk."""

    @abstractmethod
    def __iter__(self) -> Iterator[bytes | str]:
        """Yield chunks until end of stream. Raises :class:`TransportError`."""

    @abstractmethod
    def close(self) -> None:
        """Abort the stream and release the connection. Safe to call twice,
        and from a thread other than the one iterating."""

    def __enter__(self) -> "ChunkStream":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class Transport(ABC):

    # ── Public entry point ──

    @abstractmethod
    def open(self, request: GenerationRequest) -> ChunkStream:
        """Send ``request`` to the producer and return its streamed body.

        Raises :class:`TransportError` if the call fails before any body
        is available (connection refused, non-success status).
        """
