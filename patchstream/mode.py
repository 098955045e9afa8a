"""
Mode selector: decides between a fresh build and a delta request.

A request is a *delta* when the caller hands over a base tree with a root;
the producer is then expected to emit only the patches that turn that tree
into the requested one.  This module only shapes the outbound request; it
does not enforce what the producer sends back.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from .tree import Tree


class GenerationMode(str, enum.Enum):
    FRESH = "fresh"
    DELTA = "delta"


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    mode: GenerationMode
    base_tree: Tree | None = None

    @property
    def is_delta(self) -> bool:
        return self.mode is GenerationMode.DELTA

    def initial_tree(self) -> Tree:
        """The tree a session starts folding patches into."""
        if self.is_delta and self.base_tree is not None:
            return Tree(root=self.base_tree.root,
                        elements=dict(self.base_tree.elements))
        return Tree()

    def to_payload(self) -> dict[str, Any]:
        """JSON body sent to the producer."""
        payload: dict[str, Any] = {
            "prompt": self.prompt,
            "mode": self.mode.value,
        }
        if self.is_delta and self.base_tree is not None:
            payload["baseTree"] = self.base_tree.to_dict()
        return payload


def select_mode(prompt: str, base_tree: Tree | None = None) -> GenerationRequest:
    """Build the request for ``prompt``, in delta mode when ``base_tree`` has a root."""
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("prompt must be a non-empty string")
    if base_tree is None or base_tree.root is None:
        return GenerationRequest(prompt=prompt, mode=GenerationMode.FRESH)
    return GenerationRequest(prompt=prompt, mode=GenerationMode.DELTA,
                             base_tree=base_tree)
