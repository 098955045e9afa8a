"""
UI tree data model: the ``{root, elements}`` document built by a stream.

A :class:`Tree` is treated as an immutable value: the reducer always
returns a new instance and never edits one it was handed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from .codec import Operation


@dataclass
class Element:
    """One node of the tree, addressed by ``key``."""
    key: str
    type: str
    props: dict[str, Any] = field(default_factory=dict)
    children: list[str] | None = None

    @classmethod
    def from_dict(cls, value: Any, key: str | None = None) -> "Element":
        """Build an element from its JSON form.

        ``key`` overrides the ``key`` field of ``value`` (the path key wins
        when the two disagree).  Raises ``ValueError`` when ``value`` does
        not have the element shape.
        """
        if not isinstance(value, dict):
            raise ValueError("element must be a JSON object")

        el_key = key if key is not None else value.get("key")
        if not isinstance(el_key, str) or not el_key:
            raise ValueError("element key must be a non-empty string")

        el_type = value.get("type")
        if not isinstance(el_type, str) or not el_type:
            raise ValueError("element type must be a non-empty string")

        props = value.get("props")
        if props is None:
            props = {}
        if not isinstance(props, dict):
            raise ValueError("element props must be a JSON object")

        children = value.get("children")
        if children is not None:
            children = validate_children(children)

        return cls(key=el_key, type=el_type, props=dict(props),
                   children=children)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "type": self.type,
            "props": dict(self.props),
        }
        if self.children is not None:
            data["children"] = list(self.children)
        return data


def validate_children(value: Any) -> list[str]:
    """Return ``value`` as a fresh list of keys, or raise ``ValueError``."""
    if not isinstance(value, list):
        raise ValueError("children must be a JSON array")
    for child in value:
        if not isinstance(child, str):
            raise ValueError("children must contain only string keys")
    return list(value)


@dataclass
class Tree:
    """The addressable element collection plus the root pointer."""
    root: str | None = None
    elements: dict[str, Element] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.root is None and not self.elements

    def get(self, key: str) -> Element | None:
        return self.elements.get(key)

    def walk(self) -> Iterator[tuple[int, Element]]:
        """Yield ``(depth, element)`` depth-first from the root.

        Keys that do not resolve yet are skipped, and each element is
        visited at most once so a cyclic ``children`` list cannot loop.
        """
        if self.root is None:
            return
        seen: set[str] = set()
        stack: list[tuple[int, str]] = [(0, self.root)]
        while stack:
            depth, key = stack.pop()
            element = self.elements.get(key)
            if element is None or key in seen:
                continue
            seen.add(key)
            yield depth, element
            for child in reversed(element.children or []):
                stack.append((depth + 1, child))

    # ── Serialization ──

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "elements": {k: el.to_dict() for k, el in self.elements.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Tree":
        """Load a tree from its persisted JSON shape.

        Raises ``ValueError`` on a malformed document.
        """
        if not isinstance(data, dict):
            raise ValueError("tree must be a JSON object")
        root = data.get("root")
        if root is not None and not isinstance(root, str):
            raise ValueError("tree root must be a string or null")
        raw_elements = data.get("elements") or {}
        if not isinstance(raw_elements, dict):
            raise ValueError("tree elements must be a JSON object")
        elements = {
            key: Element.from_dict(value, key=key)
            for key, value in raw_elements.items()
        }
        return cls(root=root or None, elements=elements)

    def to_operations(self) -> list["Operation"]:
        """Express the whole tree as ``set`` patches.

        Replaying the result from an empty tree rebuilds this tree.
        """
        # Imported here: the codec depends on this module.
        from .codec import (
            OP_SET, TARGET_ELEMENT, TARGET_ROOT, Operation, element_path,
        )

        ops = [Operation(op=OP_SET, path="/root", target=TARGET_ROOT,
                         value=self.root)]
        for key, element in self.elements.items():
            ops.append(Operation(
                op=OP_SET,
                path=element_path(key),
                target=TARGET_ELEMENT,
                key=key,
                value=Element.from_dict(element.to_dict(), key=key),
            ))
        return ops
