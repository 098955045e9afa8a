"""
Patch codec: parses one line of producer output into a typed operation.

Wire format: one JSON object per line, ``{"op", "path", "value"?}``, where
``op`` is ``set`` or ``remove`` and ``path`` is one of::

    /root
    /elements/{key}
    /elements/{key}/children
    /elements/{key}/props/{propName}

:func:`parse_line` never raises.  It returns an :class:`Operation`, a
:class:`CodecError` describing why the line was rejected, or ``None`` for
lines that carry nothing (blank lines, bare code fences, ``//`` comments).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from .tree import Element, validate_children

logger = logging.getLogger(__name__)

OP_SET = "set"
OP_REMOVE = "remove"
OPS = (OP_SET, OP_REMOVE)

# Operation targets, one per path form
TARGET_ROOT = "root"
TARGET_ELEMENT = "element"
TARGET_CHILDREN = "children"
TARGET_PROP = "prop"

# Line that separates the patch section from free-text commentary
COMMENTARY_SEPARATOR = "---"

# Patterns
_PATH_PATTERN = re.compile(
    r"^/elements/(?P<key>[^/]+)"
    r"(?:/(?P<children>children)|/props/(?P<prop>[^/]+))?$"
)
_FENCE_OPEN = re.compile(r"^```[\w+.-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_USAGE_TRAILER = re.compile(r"^\[\[TOKENS:(?P<body>.*)\]\]$")


@dataclass(frozen=True)
class Operation:
    """A single parsed patch.

    For ``/elements/{key}`` sets, ``value`` is already an :class:`Element`
    whose ``key`` matches the path.
    """
    op: str
    path: str
    target: str
    key: str | None = None
    prop: str | None = None
    value: Any = None

    @property
    def is_set(self) -> bool:
        return self.op == OP_SET

    @property
    def is_remove(self) -> bool:
        return self.op == OP_REMOVE


@dataclass(frozen=True)
class CodecError:
    """A rejected line.  Returned, never raised."""
    line: str
    reason: str

    def __str__(self) -> str:
        return f"{self.reason}: {self.line[:200]!r}"


# ── Path grammar ──

def _unescape(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def _escape(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def element_path(key: str) -> str:
    return f"/elements/{_escape(key)}"



def parse_path(path: str) -> tuple[str, str | None, str | None] | None:
    """Split ``path`` into ``(target, key, prop)``, or ``None`` if unknown."""
    if path == "/root":
        return TARGET_ROOT, None, None
    m = _PATH_PATTERN.match(path)
    if not m:
        return None
    key = _unescape(m.group("key"))
    if m.group("children"):
        return TARGET_CHILDREN, key, None
    if m.group("prop") is not None:
        return TARGET_PROP, key, _unescape(m.group("prop"))
    return TARGET_ELEMENT, key, None


# ── Line parsing ──

def strip_fences(line: str) -> str:
    """Remove markdown code fences a producer wrapped around a line."""
    text = line.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text, count=1)
    if text.endswith("```"):
        text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def parse_usage_trailer(line: str) -> dict[str, Any] | None:
    """Return the usage mapping from a ``[[TOKENS:{...}]]`` line, if it is one."""
    m = _USAGE_TRAILER.match(line.strip())
    if not m:
        return None
    try:
        usage = json.loads(m.group("body"))
    except json.JSONDecodeError:
        return None
    return usage if isinstance(usage, dict) else None


def parse_line(line: str) -> Operation | CodecError | None:
    """Parse one line of producer output.

    Parameters
    ----------
    line:
        A single line, with or without its trailing newline.

    Returns
    -------
    Operation | CodecError | None
        ``None`` for lines with no content.
    """
    text = strip_fences(line)
    if not text or text.startswith("//"):
        return None

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as e:
        return CodecError(line, f"invalid JSON ({e.__class__.__name__})")

    if not isinstance(data, dict):
        return CodecError(line, "patch is not a JSON object")

    op = data.get("op")
    if op not in OPS:
        return CodecError(line, f"unknown op {op!r}")

    path = data.get("path")
    if not isinstance(path, str):
        return CodecError(line, "path missing or not a string")

    parsed = parse_path(path)
    if parsed is None:
        return CodecError(line, f"unrecognized path {path!r}")
    target, key, prop = parsed

    if op == OP_REMOVE:
        return Operation(op=op, path=path, target=target, key=key, prop=prop)

    if "value" not in data:
        return CodecError(line, "set without a value")

    try:
        value = _coerce_value(target, key, data["value"])
    except ValueError as e:
        return CodecError(line, str(e))

    return Operation(op=op, path=path, target=target, key=key, prop=prop,
                     value=value)


def _coerce_value(target: str, key: str | None, value: Any) -> Any:
    """Check ``value`` against the shape its path form expects."""
    if target == TARGET_ROOT:
        if value is not None and not isinstance(value, str):
            raise ValueError("root must be an element key or null")
        return value
    if target == TARGET_ELEMENT:
        if isinstance(value, dict) and value.get("key") not in (None, key):
            logger.debug(
                f"[Codec] Element key {value.get('key')!r} differs from "
                f"path key {key!r}; using path key")
        return Element.from_dict(value, key=key)
    if target == TARGET_CHILDREN:
        return validate_children(value)
    return value


# ── Encoding ──

def encode_operation(operation: Operation) -> str:
    """Write ``operation`` as one compact JSON line (no newline)."""
    data: dict[str, Any] = {"op": operation.op, "path": operation.path}
    if operation.is_set:
        value = operation.value
        if isinstance(value, Element):
            value = value.to_dict()
        data["value"] = value
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)
