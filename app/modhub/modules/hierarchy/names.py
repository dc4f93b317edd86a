from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from app.modhub.modules.hierarchy.nodes import Folder, Forest, Item, Node, iter_nodes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomName:
    display_name: str
    description: str = ""


CustomNames = dict[str, CustomName]


def custom_names_to_json(names: CustomNames) -> dict[str, dict[str, str]]:
    return {key: {"displayName": v.display_name, "description": v.description} for key, v in names.items()}


def custom_names_from_json(data: Any) -> CustomNames:
    """Accepts {key: {displayName|name, description}}; anything else yields {}."""
    if not isinstance(data, dict):
        return {}
    out: CustomNames = {}
    for key, raw in data.items():
        if not isinstance(raw, dict):
            continue
        name = raw.get("displayName") if raw.get("displayName") is not None else raw.get("name")
        if not name:
            continue
        out[str(key)] = CustomName(display_name=str(name), description=str(raw.get("description") or ""))
    return out


def parse_custom_names(raw: str | None) -> CustomNames:
    if raw is None or not raw.strip():
        return {}
    try:
        return custom_names_from_json(json.loads(raw))
    except json.JSONDecodeError as e:
        logger.warning("Custom names JSON is invalid; ignoring: %s", e)
        return {}


def dump_custom_names(names: CustomNames) -> str:
    return json.dumps(custom_names_to_json(names), ensure_ascii=False, sort_keys=True)


def rename(
    names: CustomNames,
    node: Node,
    new_name: str,
    new_description: str,
    *,
    fan_out: Callable[[str, str], int] | None = None,
) -> CustomNames:
    """
    Record an override for `node` and return the new map.

    For items, `fan_out(module_key, new_name)` pushes the name to every shared
    record using the same key. A failing fan-out is logged; the override stands.
    """
    updated = dict(names)
    updated[node.canonical_key] = CustomName(display_name=new_name, description=new_description)
    if isinstance(node, Item) and fan_out is not None:
        try:
            count = fan_out(node.canonical_key, new_name)
            logger.info("Module name fanned out: key=%s rows=%s", node.canonical_key, count)
        except Exception:
            logger.exception("Module name fan-out failed for key=%s", node.canonical_key)
    return updated


def apply_overrides(forest: Forest, names: CustomNames) -> Forest:
    """View-time overlay of custom display data."""
    if not names:
        return list(forest)
    out: Forest = []
    for node in forest:
        if isinstance(node, Folder):
            node = replace(node, children=apply_overrides(node.children, names))
        override = names.get(node.canonical_key)
        if override is not None:
            node = replace(node, display_name=override.display_name, description=override.description)
        out.append(node)
    return out


def resolve_module_info(
    module_key: str,
    default_name: str,
    default_description: str,
    names: CustomNames,
    forest: Forest | None = None,
) -> tuple[str, str]:
    """Custom name first, then the node in the hierarchy, then the defaults."""
    override = names.get(module_key)
    if override is not None and override.display_name:
        return override.display_name, override.description or default_description
    if forest:
        for node in iter_nodes(forest):
            if (node.id == module_key or node.canonical_key == module_key) and node.display_name:
                return node.display_name, node.description or default_description
    return default_name, default_description
