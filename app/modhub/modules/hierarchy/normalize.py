from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

from app.modhub.modules.hierarchy.nodes import Catalog, Folder, Forest, Item, Node

_WS_RE = re.compile(r"\s+")


def normalize_name(name: str | None) -> str:
    """
    Name form used for matching: trimmed, inner whitespace collapsed, lowercased.

    Examples:
        >>> normalize_name("  Payments   Desk ")
        'payments desk'
    """
    return _WS_RE.sub(" ", (name or "").strip()).lower()


@dataclass
class CatalogIndex:
    by_id: dict[str, str] = field(default_factory=dict)
    by_name: dict[str, str] = field(default_factory=dict)
    by_href: dict[str, str] = field(default_factory=dict)
    valid_keys: set[str] = field(default_factory=set)

    def resolve(self, item: Item) -> str | None:
        """Canonical key for `item`, or None when nothing in the catalog matches."""
        for ident in (item.canonical_key, item.id):
            if ident and ident in self.by_id:
                return self.by_id[ident]
        href = (item.href or "").strip()
        if href and href in self.by_href:
            return self.by_href[href]
        name = normalize_name(item.display_name)
        if name and name in self.by_name:
            return self.by_name[name]
        return None


def build_index(catalog: Catalog) -> CatalogIndex:
    """First entry in catalog order wins on a shared name/href/legacy id."""
    idx = CatalogIndex()
    for entry in catalog:
        key = entry.canonical_key
        idx.valid_keys.add(key)
        idx.by_id.setdefault(key, key)
    # Canonical keys beat legacy ids of other entries.
    for entry in catalog:
        for legacy in entry.legacy_ids:
            if legacy:
                idx.by_id.setdefault(legacy, entry.canonical_key)
        href = (entry.href or "").strip()
        if href:
            idx.by_href.setdefault(href, entry.canonical_key)
        name = normalize_name(entry.display_name)
        if name:
            idx.by_name.setdefault(name, entry.canonical_key)
    return idx


def _normalize_node(node: Node, idx: CatalogIndex) -> Node:
    if isinstance(node, Folder):
        return replace(node, children=[_normalize_node(c, idx) for c in node.children])
    key = idx.resolve(node)
    if key is None:
        # Orphan: keep in place, merge decides whether it survives.
        return node
    if key == node.canonical_key and key == node.id:
        return node
    return replace(node, id=key, canonical_key=key)


def normalize_forest(saved: Forest, catalog: Catalog) -> Forest:
    """Rewrite leaf identities to current canonical keys; structure is preserved."""
    idx = build_index(catalog)
    return [_normalize_node(n, idx) for n in saved]
