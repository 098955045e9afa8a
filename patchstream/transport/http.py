"""
HTTP transport: POSTs the generation request and streams the body back.
"""

import logging
import threading
from typing import Iterator, Optional

import requests

from .base import ChunkStream, Transport, TransportError
from ..mode import GenerationRequest

log = logging.getLogger(__name__)


class HttpChunkStream(ChunkStream):

    def __init__(self, response: requests.Response,
                 chunk_size: Optional[int] = None):
        self._response = response
        self._chunk_size = chunk_size
        self._closed = threading.Event()
        self.bytes_read = 0

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_content(
                    chunk_size=self._chunk_size, decode_unicode=False):
                if self._closed.is_set():
                    return
                if chunk:
                    self.bytes_read += len(chunk)
                    yield chunk
        except Exception as e:
            # Closing the response from another thread makes the pending
            # read fail; that is a cancellation, not a transport failure.
            if self._closed.is_set():
                log.debug(f"[HTTP] Read aborted after close: {e}")
                return
            raise TransportError(f"Stream interrupted: {e}") from e

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._response.close()


class HttpTransport(Transport):

    def __init__(self, url: str, api_key: str = "",
                 headers: Optional[dict] = None,
                 connect_timeout: float = 10.0,
                 read_timeout: float = 120.0,
                 chunk_size: Optional[int] = None):
        self.url = url
        self.api_key = api_key
        self.extra_headers = dict(headers or {})
        self.timeout = (connect_timeout, read_timeout)
        self.chunk_size = chunk_size

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/x-ndjson, text/plain",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.extra_headers)
        return headers

    def open(self, request: GenerationRequest) -> HttpChunkStream:
        payload = request.to_payload()
        log.debug(f"[HTTP] POST {self.url} mode={request.mode.value}")
        log.debug(f"[HTTP] Prompt:\n{request.prompt}")

        try:
            response = requests.post(self.url, headers=self._headers(),
                                     json=payload, stream=True,
                                     timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            log.error(f"[HTTP] Connection error: {e}")
            raise TransportError(f"Connection failed: {e}") from e
        except (TypeError, ValueError) as e:
            # requests serializes the body itself; a base tree holding a
            # value JSON cannot represent fails here.
            log.error(f"[HTTP] Request body is not valid JSON: {e}")
            raise TransportError(f"Cannot encode request: {e}") from e

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = response.status_code
            response.close()
            log.error(f"[HTTP] Producer returned status {status}")
            raise TransportError(f"HTTP error: {status}",
                                 status_code=status) from e

        return HttpChunkStream(response, chunk_size=self.chunk_size)
