"""
Reconcile a persisted forest against the current catalog.

Two variants:
  - available: additive only. Catalog items missing from the saved forest are
    appended at the root; nothing is ever removed.
  - assigned: leaves whose key is no longer in the catalog are dropped (the
    assignment was revoked), duplicates are removed (folder placement beats
    root placement, then first occurrence wins) and new catalog items are
    appended at the root.

Both variants keep folder ids unique: a later folder reusing an id is
dissolved into its children at the same position.

Folders are always kept, empty or not.

merge_assigned() must not run against a catalog that has not loaded yet: an
empty catalog would strip every leaf. It returns the forest unchanged in that
case, and callers also gate merging on a catalog-ready flag.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from app.modhub.modules.hierarchy.nodes import (
    Catalog,
    CatalogEntry,
    Folder,
    Forest,
    Item,
    check_hierarchy_type,
    collect_keys,
    iter_items,
)
from app.modhub.modules.hierarchy.normalize import normalize_forest

logger = logging.getLogger(__name__)


def default_forest(catalog: Catalog) -> Forest:
    return [entry.to_item() for entry in catalog]


def _append_missing(forest: Forest, catalog: Catalog) -> Forest:
    present = collect_keys(forest)
    missing = [entry.to_item() for entry in catalog if entry.canonical_key not in present]
    return [*forest, *missing]


def _dissolve_duplicate_folders(forest: Forest, seen: set[str]) -> Forest:
    """A folder whose id already appeared earlier is replaced by its children."""
    out: Forest = []
    for node in forest:
        if not isinstance(node, Folder):
            out.append(node)
            continue
        duplicate = node.id in seen
        seen.add(node.id)
        children = _dissolve_duplicate_folders(node.children, seen)
        if duplicate:
            logger.warning("Duplicate folder id %s in saved hierarchy; keeping its children only", node.id)
            out.extend(children)
        else:
            out.append(replace(node, children=children))
    return out


def merge_available(saved: Forest, catalog: Catalog) -> Forest:
    return _append_missing(_dissolve_duplicate_folders(saved, set()), catalog)


def _refresh(item: Item, entry: CatalogEntry) -> Item:
    return replace(
        item,
        id=entry.canonical_key,
        canonical_key=entry.canonical_key,
        display_name=entry.display_name,
        description=entry.description,
        href=entry.href,
    )


def _filter_valid(forest: Forest, by_key: dict[str, CatalogEntry]) -> Forest:
    out: Forest = []
    for node in forest:
        if isinstance(node, Folder):
            out.append(replace(node, children=_filter_valid(node.children, by_key)))
            continue
        entry = by_key.get(node.canonical_key)
        if entry is not None:
            out.append(_refresh(node, entry))
    return out


def _keys_inside_folders(forest: Forest) -> set[str]:
    keys: set[str] = set()
    for node in forest:
        if isinstance(node, Folder):
            keys.update(item.canonical_key for item in iter_items(node.children))
    return keys


def _dedupe(forest: Forest, seen: set[str]) -> Forest:
    out: Forest = []
    for node in forest:
        if isinstance(node, Folder):
            out.append(replace(node, children=_dedupe(node.children, seen)))
            continue
        if node.canonical_key in seen:
            continue
        seen.add(node.canonical_key)
        out.append(node)
    return out


def merge_assigned(saved: Forest, catalog: Catalog) -> Forest:
    if not catalog:
        logger.info("merge_assigned skipped: catalog is empty")
        return list(saved)

    by_key: dict[str, CatalogEntry] = {}
    for entry in catalog:
        by_key.setdefault(entry.canonical_key, entry)

    forest = normalize_forest(saved, catalog)
    forest = _dissolve_duplicate_folders(forest, set())
    forest = _filter_valid(forest, by_key)

    in_folders = _keys_inside_folders(forest)
    forest = [n for n in forest if isinstance(n, Folder) or n.canonical_key not in in_folders]

    forest = _dedupe(forest, set())
    return _append_missing(forest, catalog)


def merge_forest(hierarchy_type: str, saved: Forest, catalog: Catalog) -> Forest:
    """Load-path merge for either hierarchy type."""
    if check_hierarchy_type(hierarchy_type) == "assigned":
        return merge_assigned(saved, catalog)
    # Resolve legacy ids first so the append step does not add a second copy.
    return merge_available(normalize_forest(saved, catalog), catalog)
