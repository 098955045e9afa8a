"""
Tree reducer: folds one :class:`~patchstream.codec.Operation` into a tree.

``apply_operation`` is pure: the input tree is never modified and a new
:class:`Tree` is returned.  Untouched elements are shared between the old
and new tree; an element that changes is copied first.

``remove`` deletes what its path names: the root pointer, a whole element,
an element's ``children`` list, or one prop.  Sub-path patches
(``children`` / ``props``) aimed at an element that has not arrived yet
are dropped, as is removing something that is not there.  Both leave the
tree unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable

from .codec import (
    Operation, TARGET_CHILDREN, TARGET_ELEMENT, TARGET_PROP, TARGET_ROOT,
)
from .tree import Element, Tree

logger = logging.getLogger(__name__)


def apply_operation(tree: Tree, operation: Operation) -> Tree:
    """Return the tree that results from applying ``operation`` to ``tree``."""
    target = operation.target

    if target == TARGET_ROOT:
        if operation.is_remove:
            if tree.root is None:
                return tree
            return Tree(root=None, elements=tree.elements)
        return Tree(root=operation.value, elements=tree.elements)

    key = operation.key
    if key is None:
        return tree

    if target == TARGET_ELEMENT:
        elements = dict(tree.elements)
        if operation.is_remove:
            if key not in elements:
                logger.debug(f"[Reducer] remove of missing element {key!r} ignored")
                return tree
            del elements[key]
            return Tree(root=tree.root, elements=elements)
        elements[key] = _as_element(key, operation.value)
        return Tree(root=tree.root, elements=elements)

    current = tree.elements.get(key)
    if current is None:
        logger.debug(
            f"[Reducer] {operation.path} targets missing element; deferred")
        return tree

    if target == TARGET_CHILDREN:
        if operation.is_remove:
            if current.children is None:
                return tree
            updated = replace(current, children=None)
        else:
            updated = replace(current, children=list(operation.value))
    elif target == TARGET_PROP:
        props = dict(current.props)
        if operation.is_remove:
            if operation.prop not in props:
                return tree
            del props[operation.prop]
        else:
            props[operation.prop] = operation.value
        updated = replace(current, props=props)
    else:
        return tree

    elements = dict(tree.elements)
    elements[key] = updated
    return Tree(root=tree.root, elements=elements)


def apply_operations(tree: Tree, operations: Iterable[Operation]) -> Tree:
    """Fold ``operations`` into ``tree`` in order."""
    for operation in operations:
        tree = apply_operation(tree, operation)
    return tree


def _as_element(key: str, value) -> Element:
    if isinstance(value, Element):
        if value.key == key:
            return replace(value, props=dict(value.props),
                           children=None if value.children is None
                           else list(value.children))
        value = value.to_dict()
    return Element.from_dict(value, key=key)
