import json
import logging
import os
import shutil
import sys
import threading
from datetime import datetime

from .tree import Tree


class TokenTracker:
    """Accumulates token usage reported by producers across sessions."""

    def __init__(self):
        self.total_prompt_tokens = 0
        self.total_completion_tokens = 0
        self.call_count = 0
        self._lock = threading.Lock()

    def record(self, prompt_tokens: int, completion_tokens: int):
        with self._lock:
            self.total_prompt_tokens += prompt_tokens
            self.total_completion_tokens += completion_tokens
            self.call_count += 1

    def reset(self):
        with self._lock:
            self.total_prompt_tokens = 0
            self.total_completion_tokens = 0
            self.call_count = 0

    @property
    def total_tokens(self):
        return self.total_prompt_tokens + self.total_completion_tokens


def setup_logger(log_dir: str = ".patchstream/logs",
                 level: str = "DEBUG") -> logging.Logger:
    """Creates a file logger for the ``patchstream`` package.

    Only the CLI calls this; as a library the package installs no handlers.
    """
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"session_{timestamp}.log")

    logger = logging.getLogger("patchstream")
    logger.setLevel(getattr(logging, str(level).upper(), logging.DEBUG))

    # File handler: captures everything at the configured level
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logger.level)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    return logger


def format_tree(tree: Tree | None, indent: str = "  ") -> str:
    """Render ``tree`` as an indented outline, one element per line.

    Elements not reachable from the root are listed under ``(detached)``.
    """
    if tree is None or tree.is_empty:
        return "(empty tree)"

    lines: list[str] = []
    reached: set[str] = set()
    for depth, element in tree.walk():
        reached.add(element.key)
        lines.append(f"{indent * depth}{_describe(element)}")

    if tree.root is not None and tree.root not in tree.elements:
        lines.insert(0, f"(root {tree.root!r} not received)")

    detached = [el for key, el in tree.elements.items() if key not in reached]
    if detached:
        lines.append("(detached)")
        for element in detached:
            lines.append(f"{indent}{_describe(element)}")
    return "\n".join(lines)


def _describe(element) -> str:
    label = f"{element.type} [{element.key}]"
    if element.props:
        props = json.dumps(element.props, ensure_ascii=False)
        if len(props) > 60:
            props = props[:57] + "..."
        label += f" {props}"
    return label


class ProgressLine:
    """Single-line live status for a streaming session, redrawn in place."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr
        self._render_lock = threading.Lock()
        self._width = shutil.get_terminal_size((80, 24)).columns

    def update(self, tree: Tree, stats) -> None:
        text = (f"elements: {len(tree.elements)}  ops: {stats.operations}  "
                f"skipped: {stats.codec_errors}  bytes: {stats.bytes}")
        with self._render_lock:
            self.stream.write("\r" + text[: self._width - 1].ljust(self._width - 1))
            self.stream.flush()

    def done(self, message: str) -> None:
        with self._render_lock:
            self.stream.write("\r" + message.ljust(self._width - 1) + "\n")
            self.stream.flush()
