"""
Tree data model for module hierarchies.

A forest is a plain ordered list of nodes. Nodes are frozen dataclasses; every
tree function in this package builds new lists and nodes instead of mutating.

Persisted shape:
    Item   := {id, canonicalKey, kind: "item", displayName, description, href}
    Folder := {id, canonicalKey, kind: "folder", displayName, description, isOpen, children}

Older records used {id, key, type: "module" | "folder", name, ...} and sometimes
only a legacyId; node_from_json() reads both shapes.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

HIERARCHY_TYPES = ("available", "assigned")


class HierarchyError(RuntimeError):
    pass


class ForestFormatError(HierarchyError):
    pass


class UnknownHierarchyType(ValueError):
    pass


def check_hierarchy_type(value: str) -> str:
    v = (value or "").strip().lower()
    if v not in HIERARCHY_TYPES:
        raise UnknownHierarchyType(f"Unknown hierarchy type: {value!r}")
    return v


@dataclass(frozen=True)
class Item:
    id: str
    canonical_key: str
    display_name: str = ""
    description: str = ""
    href: str = ""

    kind = "item"


@dataclass(frozen=True)
class Folder:
    id: str
    display_name: str = ""
    description: str = ""
    is_open: bool = False
    children: list["Node"] = field(default_factory=list)

    kind = "folder"

    @property
    def canonical_key(self) -> str:
        return self.id


Node = Union[Item, Folder]
Forest = list[Node]


@dataclass(frozen=True)
class CatalogEntry:
    canonical_key: str
    display_name: str = ""
    href: str = ""
    description: str = ""
    legacy_ids: tuple[str, ...] = ()
    kind: str = "item"

    def to_item(self) -> Item:
        return Item(
            id=self.canonical_key,
            canonical_key=self.canonical_key,
            display_name=self.display_name,
            description=self.description,
            href=self.href,
        )


Catalog = list[CatalogEntry]


def iter_nodes(forest: Forest) -> Iterator[Node]:
    """Depth-first, document order."""
    for node in forest:
        yield node
        if isinstance(node, Folder):
            yield from iter_nodes(node.children)


def iter_items(forest: Forest) -> Iterator[Item]:
    for node in iter_nodes(forest):
        if isinstance(node, Item):
            yield node


def collect_keys(forest: Forest) -> set[str]:
    return {node.canonical_key for node in iter_nodes(forest)}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def node_to_json(node: Node) -> dict[str, Any]:
    if isinstance(node, Folder):
        return {
            "id": node.id,
            "canonicalKey": node.canonical_key,
            "kind": "folder",
            "displayName": node.display_name,
            "description": node.description,
            "isOpen": node.is_open,
            "children": forest_to_json(node.children),
        }
    return {
        "id": node.id,
        "canonicalKey": node.canonical_key,
        "kind": "item",
        "displayName": node.display_name,
        "description": node.description,
        "href": node.href,
    }


def forest_to_json(forest: Forest) -> list[dict[str, Any]]:
    return [node_to_json(n) for n in forest]


def _is_folder_record(data: dict[str, Any]) -> bool:
    kind = data.get("kind") or data.get("type")
    if kind == "folder":
        return True
    if kind in ("item", "module"):
        return False
    return isinstance(data.get("children"), list)


def node_from_json(data: Any) -> Node | None:
    """Build a node from a persisted record; returns None for unusable records."""
    if not isinstance(data, dict):
        logger.warning("Skipping non-object hierarchy node: %r", data)
        return None

    node_id = _text(data.get("id") or data.get("legacyId") or data.get("key") or data.get("canonicalKey")).strip()
    name = _text(data.get("displayName") if data.get("displayName") is not None else data.get("name"))
    description = _text(data.get("description"))

    if _is_folder_record(data):
        if not node_id:
            logger.warning("Skipping folder without id: %r", data)
            return None
        raw_children = data.get("children")
        children = forest_from_json(raw_children) if isinstance(raw_children, list) else []
        return Folder(
            id=node_id,
            display_name=name,
            description=description,
            is_open=bool(data.get("isOpen", False)),
            children=children,
        )

    key = _text(data.get("canonicalKey") or data.get("key") or data.get("legacyId") or node_id).strip()
    if not key and not name:
        logger.warning("Skipping item without any identity: %r", data)
        return None
    return Item(
        id=node_id or key,
        canonical_key=key,
        display_name=name,
        description=description,
        href=_text(data.get("href") or data.get("path")),
    )


def forest_from_json(data: Any) -> Forest:
    if not isinstance(data, list):
        raise ForestFormatError(f"Forest must be a JSON array, got {type(data).__name__}")
    forest: Forest = []
    for raw in data:
        node = node_from_json(raw)
        if node is not None:
            forest.append(node)
    return forest


def parse_forest(raw: str | None) -> Forest | None:
    """Parse a serialized forest; None when nothing is stored."""
    if raw is None or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ForestFormatError(f"Forest JSON is invalid: {e}") from e
    return forest_from_json(data)


def dump_forest(forest: Forest) -> str:
    return json.dumps(forest_to_json(forest), ensure_ascii=False, sort_keys=True)
