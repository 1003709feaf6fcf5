"""Cycle-safe, copy-on-write traversal of parsed JSON-like trees.

Only plain `dict` and `list` nodes are entered; anything else (datetimes,
tuples, model instances) is returned untouched. Children are rebuilt before
their parent, with an explicit work stack instead of recursion so deeply
nested payloads cannot hit the interpreter's recursion limit.

Unchanged subtrees are returned by identity: a callback that makes no change
must return the very object it was given, and a caller can detect "nothing
happened" with `result is original`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

type ObjectVisitor = Callable[[dict[str, Any]], dict[str, Any]]
type ListVisitor = Callable[[list[Any]], list[Any]]


def is_container(value: object) -> bool:
    """True for the plain mapping and sequence nodes the walker enters."""
    return isinstance(value, dict | list)


def walk(
    root: Any,
    *,
    on_object: ObjectVisitor | None = None,
    on_list: ListVisitor | None = None,
) -> Any:
    """Rebuild `root` bottom-up, applying the visitors at every container.

    Visitors receive a node whose children are already rebuilt. They must not
    mutate it; to change it they return a new container. A node reached again
    through a cycle is left as the original object at the back-edge, and a
    node shared by several parents is transformed once.

    Args:
        root: Parsed tree (or any value).
        on_object: Called for every dict node.
        on_list: Called for every list node.

    Returns:
        The rebuilt tree, or `root` itself when nothing changed.
    """
    if not is_container(root):
        return root

    done: dict[int, Any] = {}
    in_progress: set[int] = set()
    stack: list[tuple[Any, bool]] = [(root, False)]

    while stack:
        node, expanded = stack.pop()
        key = id(node)
        if expanded:
            done[key] = _rebuild(node, done, on_object, on_list)
            in_progress.discard(key)
            continue
        if key in done or key in in_progress:
            continue
        in_progress.add(key)
        stack.append((node, True))
        children = node.values() if isinstance(node, dict) else node
        for child in children:
            child_key = id(child)
            if is_container(child) and child_key not in done and child_key not in in_progress:
                stack.append((child, False))

    return done.get(id(root), root)


def _rebuild(
    node: dict[str, Any] | list[Any],
    done: dict[int, Any],
    on_object: ObjectVisitor | None,
    on_list: ListVisitor | None,
) -> Any:
    def resolved(child: Any) -> Any:
        return done.get(id(child), child) if is_container(child) else child

    if isinstance(node, dict):
        rebuilt_dict = {k: resolved(v) for k, v in node.items()}
        if all(rebuilt_dict[k] is v for k, v in node.items()):
            rebuilt_dict = node
        return on_object(rebuilt_dict) if on_object else rebuilt_dict

    rebuilt_list = [resolved(v) for v in node]
    if all(new is old for new, old in zip(rebuilt_list, node, strict=True)):
        rebuilt_list = node
    return on_list(rebuilt_list) if on_list else rebuilt_list
