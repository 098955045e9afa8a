"""Incremental UI tree construction from streamed JSONL patches."""

from .codec import CodecError, Operation, encode_operation, parse_line
from .mode import GenerationMode, GenerationRequest, select_mode
from .reducer import apply_operation, apply_operations
from .reframer import LineReframer, iter_lines
from .session import SessionState, SessionStateError, SessionStats, StreamSession
from .transport import HttpTransport, ReplayTransport, Transport, TransportError
from .tree import Element, Tree

__all__ = [
    "CodecError", "Operation", "encode_operation", "parse_line",
    "GenerationMode", "GenerationRequest", "select_mode",
    "apply_operation", "apply_operations",
    "LineReframer", "iter_lines",
    "SessionState", "SessionStateError", "SessionStats", "StreamSession",
    "HttpTransport", "ReplayTransport", "Transport", "TransportError",
    "Element", "Tree",
]
