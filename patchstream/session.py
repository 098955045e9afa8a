"""
Stream session controller: runs one generation from request to final tree.

States::

    IDLE ──start()──> ACTIVE ──end of stream──> COMPLETED
                        │ ──transport failure──> ERRORED
                        └ ──cancel()──────────> CANCELLED
    COMPLETED / ERRORED / CANCELLED ──reset()──> IDLE

The pump reads one chunk, reframes it, parses and folds every completed
line, then publishes a single snapshot.  Malformed lines are logged and
skipped; only transport failures end a session early.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .cli_display import TokenTracker
from .codec import (
    COMMENTARY_SEPARATOR, CodecError, Operation, parse_line,
    parse_usage_trailer,
)
from .mode import GenerationRequest, select_mode
from .reducer import apply_operation
from .reframer import LineReframer
from .transport.base import ChunkStream, Transport, TransportError
from .tree import Tree

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Tree], None]
ErrorCallback = Callable[[Exception, Optional[Tree]], None]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ERRORED,
                        SessionState.CANCELLED)


class SessionStateError(RuntimeError):
    """Raised when an operation is called from a state that does not allow it."""


@dataclass
class SessionStats:
    chunks: int = 0
    bytes: int = 0
    lines: int = 0
    operations: int = 0
    codec_errors: int = 0
    usage: dict[str, Any] = field(default_factory=dict)


class StreamSession:
    """Drives one stream at a time through reframer, codec and reducer.

    Callbacks run on the thread that runs the pump (or, for ``on_cancel``,
    the thread that called :meth:`cancel`), never while the session lock
    is held, so a callback may call :meth:`cancel` or wait on a thread that
    does.  Reported token usage goes to ``token_tracker`` when one is given.
    """

    def __init__(self, transport: Transport,
                 on_snapshot: Optional[SnapshotCallback] = None,
                 on_complete: Optional[SnapshotCallback] = None,
                 on_error: Optional[ErrorCallback] = None,
                 on_cancel: Optional[SnapshotCallback] = None,
                 token_tracker: Optional[TokenTracker] = None):
        self.transport = transport
        self.on_snapshot = on_snapshot
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_cancel = on_cancel
        self.token_tracker = token_tracker

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._state = SessionState.IDLE
        self._request: GenerationRequest | None = None
        self._stream: ChunkStream | None = None
        self._reframer: LineReframer | None = None
        self._tree: Tree | None = None
        self._published: Tree | None = None
        self._error: Exception | None = None
        self._in_commentary = False
        self._commentary: list[str] = []
        self.stats = SessionStats()

    # ── Introspection ──

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def tree(self) -> Tree | None:
        """The most recently published snapshot (``None`` when idle)."""
        return self._published

    @property
    def request(self) -> GenerationRequest | None:
        return self._request

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def commentary(self) -> str:
        """Free text the producer sent after the ``---`` separator."""
        return "\n".join(self._commentary).strip()

    # ── Public entry points ──

    def start(self, prompt: str, base_tree: Tree | None = None) -> Tree | None:
        """Run a whole generation in the calling thread.

        Returns the final tree on completion, or the last published snapshot
        when the session was cancelled or failed.
        """
        request = self._begin(prompt, base_tree)
        self._pump(request)
        return self._published

    def start_in_thread(self, prompt: str,
                        base_tree: Tree | None = None) -> threading.Thread:
        """Like :meth:`start`, but pump on a daemon thread.

        State checks happen before this returns, so a second start from
        a non-idle session raises here rather than on the worker thread.
        """
        request = self._begin(prompt, base_tree)
        thread = threading.Thread(target=self._pump, args=(request,),
                                  name="patchstream-session", daemon=True)
        thread.start()
        return thread

    def cancel(self) -> None:
        """Stop the active stream; no snapshot is published afterwards."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                raise SessionStateError(
                    f"cannot cancel a session that is {self._state.value}")
            self._stop.set()
            self._state = SessionState.CANCELLED
            if self._reframer is not None:
                self._reframer.discard()
            self._tree = self._published
            stream = self._stream
        logger.info("[Session] Cancelled by caller")
        if stream is not None:
            stream.close()
        if self.on_cancel:
            self.on_cancel(self._published)

    def reset(self) -> None:
        """Return a finished session to IDLE, dropping its tree."""
        with self._lock:
            if not self._state.is_terminal:
                raise SessionStateError(
                    f"cannot reset a session that is {self._state.value}")
            self._state = SessionState.IDLE
            self._request = None
            self._stream = None
            self._reframer = None
            self._tree = None
            self._published = None
            self._error = None
            self._in_commentary = False
            self._commentary = []
            self.stats = SessionStats()
            self._stop.clear()

    # ── Pump ──

    def _begin(self, prompt: str, base_tree: Tree | None) -> GenerationRequest:
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise SessionStateError(
                    f"cannot start a session that is {self._state.value}")
            request = select_mode(prompt, base_tree)
            self._request = request
            self._state = SessionState.ACTIVE
            self._stop.clear()
            self._reframer = LineReframer()
            self._tree = request.initial_tree()
            self._published = self._tree
            self._error = None
            self._in_commentary = False
            self._commentary = []
            self.stats = SessionStats()
        logger.info(f"[Session] Starting {request.mode.value} generation")
        return request

    def _pump(self, request: GenerationRequest) -> None:
        try:
            stream = self.transport.open(request)
        except TransportError as e:
            self._fail(e)
            return
        except Exception as e:
            self._abort(e)
            raise

        with self._lock:
            if self._stop.is_set():
                stream.close()
                return
            self._stream = stream

        try:
            for chunk in stream:
                if self._stop.is_set():
                    break
                self.stats.chunks += 1
                self.stats.bytes += len(chunk)
                lines = self._reframer.feed(chunk)
                if lines:
                    self._fold(lines, final=False)
                if self._stop.is_set():
                    break

            if self._stop.is_set():
                return
            self._fold(self._reframer.finish(), final=True)
            self._complete()
        except TransportError as e:
            if self._stop.is_set():
                return
            self._fail(e)
        except Exception as e:
            # A caller's callback raised; end the session and let it propagate.
            self._abort(e)
            raise
        finally:
            stream.close()

    def _fold(self, lines: list[str], final: bool) -> None:
        tree = self._tree
        applied = 0
        for line in lines:
            self.stats.lines += 1
            operation = self._parse(line)
            if operation is None:
                continue
            tree = apply_operation(tree, operation)
            applied += 1
        self.stats.operations += applied

        with self._lock:
            if self._stop.is_set():
                return
            self._tree = tree
            if not (applied or final):
                return
            self._published = tree

        # Callbacks run without the lock so they may wait on a thread
        # that calls cancel().
        if self.on_snapshot and not self._stop.is_set():
            self.on_snapshot(tree)

    def _parse(self, line: str) -> Operation | None:
        usage = parse_usage_trailer(line)
        if usage is not None:
            self._record_usage(usage)
            return None

        if self._in_commentary:
            self._commentary.append(line)
            return None
        if line.strip() == COMMENTARY_SEPARATOR:
            self._in_commentary = True
            return None

        result = parse_line(line)
        if isinstance(result, CodecError):
            self.stats.codec_errors += 1
            logger.warning(f"[Session] Skipping malformed line: {result}")
            return None
        return result

    def _record_usage(self, usage: dict[str, Any]) -> None:
        self.stats.usage = usage
        prompt_tokens = usage.get("promptTokens", 0)
        completion_tokens = usage.get("completionTokens", 0)
        if self.token_tracker is not None:
            self.token_tracker.record(
                prompt_tokens if isinstance(prompt_tokens, int) else 0,
                completion_tokens if isinstance(completion_tokens, int) else 0,
            )
        logger.debug(
            f"[Session] Usage: prompt={prompt_tokens} completion={completion_tokens}")

    # ── Terminal transitions ──

    def _complete(self) -> None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._state = SessionState.COMPLETED
            tree = self._published
        logger.info(
            f"[Session] Completed: {self.stats.operations} ops, "
            f"{self.stats.codec_errors} malformed lines, "
            f"{len(tree.elements)} elements")
        if self.on_complete:
            self.on_complete(tree)

    def _abort(self, error: Exception) -> None:
        """Move to ERRORED after an exception that is not a transport failure."""
        with self._lock:
            if self._state not in (SessionState.ACTIVE, SessionState.COMPLETED):
                return
            self._state = SessionState.ERRORED
            self._error = error
            if self._reframer is not None:
                self._reframer.discard()
            self._tree = self._published
        logger.error(f"[Session] Aborted: {error.__class__.__name__}: {error}")

    def _fail(self, error: TransportError) -> None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._state = SessionState.ERRORED
            self._error = error
            if self._reframer is not None:
                self._reframer.discard()
            self._tree = self._published
            tree = self._published
        logger.error(f"[Session] Transport error: {error}")
        if self.on_error:
            self.on_error(error, tree)
