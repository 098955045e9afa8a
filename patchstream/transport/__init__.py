from .base import ChunkStream, Transport, TransportError
from .http import HttpChunkStream, HttpTransport
from .replay import ReplayChunkStream, ReplayTransport
