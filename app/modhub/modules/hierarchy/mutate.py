"""
Structural edits over a forest.

Every function is pure: it returns a new forest and leaves the input untouched.
Unknown ids and cycle-forming moves return the input forest unchanged.
"""
from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import replace

from app.modhub.constants import DEFAULT_FOLDER_DESCRIPTION, DEFAULT_FOLDER_NAME, DEFAULT_MERGED_FOLDER_DESCRIPTION
from app.modhub.modules.hierarchy.nodes import Folder, Forest, Node


def new_folder_id() -> str:
    return f"folder-{uuid.uuid4().hex}"


def find_node(forest: Forest, node_id: str) -> Node | None:
    for node in forest:
        if node.id == node_id:
            return node
        if isinstance(node, Folder):
            found = find_node(node.children, node_id)
            if found is not None:
                return found
    return None


def is_descendant(parent: Node, node_id: str) -> bool:
    """True when `node_id` is `parent` itself or anywhere below it."""
    if parent.id == node_id:
        return True
    if isinstance(parent, Folder):
        return any(is_descendant(child, node_id) for child in parent.children)
    return False


def remove_by_identity(forest: Forest, node_id: str) -> tuple[Forest, Node | None]:
    removed: Node | None = None
    out: Forest = []
    for node in forest:
        if removed is None and node.id == node_id:
            removed = node
            continue
        if removed is None and isinstance(node, Folder):
            children, found = remove_by_identity(node.children, node_id)
            if found is not None:
                removed = found
                node = replace(node, children=children)
        out.append(node)
    if removed is None:
        return forest, None
    return out, removed


def insert_into_folder(forest: Forest, folder_id: str, node: Node) -> Forest:
    out: Forest = []
    for n in forest:
        if isinstance(n, Folder):
            if n.id == folder_id:
                n = replace(n, is_open=True, children=[*n.children, node])
            else:
                n = replace(n, children=insert_into_folder(n.children, folder_id, node))
        out.append(n)
    return out


def insert_at_root_index(forest: Forest, index: int, node: Node) -> Forest:
    index = max(0, min(index, len(forest)))
    return [*forest[:index], node, *forest[index:]]


def _swap_in_level(forest: Forest, node_id: str, offset: int) -> Forest:
    for i, node in enumerate(forest):
        if node.id == node_id:
            j = i + offset
            if j < 0 or j >= len(forest):
                return forest
            out = list(forest)
            out[i], out[j] = out[j], out[i]
            return out
    out = []
    changed = False
    for node in forest:
        if not changed and isinstance(node, Folder):
            children = _swap_in_level(node.children, node_id, offset)
            if children is not node.children:
                node = replace(node, children=children)
                changed = True
        out.append(node)
    return out if changed else forest


def move_up(forest: Forest, node_id: str) -> Forest:
    return _swap_in_level(forest, node_id, -1)


def move_down(forest: Forest, node_id: str) -> Forest:
    return _swap_in_level(forest, node_id, 1)


def reorder(forest: Forest, source_id: str, target_id: str) -> Forest:
    """Move `source_id` to the index of `target_id` when both share a level."""
    ids = [n.id for n in forest]
    if source_id in ids and target_id in ids:
        out = list(forest)
        moved = out.pop(ids.index(source_id))
        out.insert(ids.index(target_id), moved)
        return out
    out = []
    changed = False
    for node in forest:
        if not changed and isinstance(node, Folder):
            children = reorder(node.children, source_id, target_id)
            if children is not node.children:
                node = replace(node, children=children)
                changed = True
        out.append(node)
    return out if changed else forest


def _replace_node(forest: Forest, node_id: str, make: Callable[[Node], Node]) -> Forest:
    out: Forest = []
    for node in forest:
        if node.id == node_id:
            node = make(node)
        elif isinstance(node, Folder):
            node = replace(node, children=_replace_node(node.children, node_id, make))
        out.append(node)
    return out


def drop_onto(
    dragged_id: str,
    target_id: str,
    forest: Forest,
    *,
    new_id: Callable[[], str] = new_folder_id,
    folder_name: str = DEFAULT_FOLDER_NAME,
    folder_description: str = DEFAULT_MERGED_FOLDER_DESCRIPTION,
) -> Forest:
    """
    Drop one node onto another.

    Folder target: the dragged node moves into it (and the folder opens).
    Item target: a new open folder wrapping [target, dragged] takes the
    target's place.
    """
    if dragged_id == target_id:
        return forest
    dragged = find_node(forest, dragged_id)
    target = find_node(forest, target_id)
    if dragged is None or target is None:
        return forest
    if isinstance(dragged, Folder) and is_descendant(dragged, target_id):
        return forest

    without, removed = remove_by_identity(forest, dragged_id)
    if removed is None:
        return forest

    if isinstance(target, Folder):
        return insert_into_folder(without, target_id, removed)

    def _wrap(existing: Node) -> Node:
        return Folder(
            id=new_id(),
            display_name=folder_name,
            description=folder_description,
            is_open=True,
            children=[existing, removed],
        )

    return _replace_node(without, target_id, _wrap)


def drop_between(forest: Forest, dragged_id: str, index: int) -> Forest:
    """Move a node (from any depth) to a root slot."""
    without, removed = remove_by_identity(forest, dragged_id)
    if removed is None:
        return forest
    return insert_at_root_index(without, index, removed)


def toggle_folder(forest: Forest, folder_id: str) -> Forest:
    node = find_node(forest, folder_id)
    if not isinstance(node, Folder):
        return forest
    return _replace_node(forest, folder_id, lambda f: replace(f, is_open=not f.is_open))


def create_folder(
    forest: Forest,
    name: str = DEFAULT_FOLDER_NAME,
    description: str = DEFAULT_FOLDER_DESCRIPTION,
    *,
    new_id: Callable[[], str] = new_folder_id,
) -> tuple[Forest, Folder]:
    folder = Folder(id=new_id(), display_name=name, description=description, is_open=True, children=[])
    return [*forest, folder], folder


def rename_folder(forest: Forest, folder_id: str, name: str, description: str) -> Forest:
    node = find_node(forest, folder_id)
    if not isinstance(node, Folder):
        return forest
    return _replace_node(forest, folder_id, lambda f: replace(f, display_name=name, description=description))


def add_to_folder(forest: Forest, node_id: str, folder_id: str) -> Forest:
    folder = find_node(forest, folder_id)
    node = find_node(forest, node_id)
    if not isinstance(folder, Folder) or node is None:
        return forest
    if is_descendant(node, folder_id):
        return forest
    without, removed = remove_by_identity(forest, node_id)
    if removed is None:
        return forest
    return insert_into_folder(without, folder_id, removed)


def remove_from_folder(forest: Forest, node_id: str) -> Forest:
    """Move a nested node back to the end of the root level."""
    if any(n.id == node_id for n in forest):
        return forest
    without, removed = remove_by_identity(forest, node_id)
    if removed is None:
        return forest
    return [*without, removed]
