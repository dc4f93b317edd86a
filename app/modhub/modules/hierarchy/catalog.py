from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.modhub.audit import record_event
from app.modhub.modules.hierarchy.models import CatalogModule, ModuleAssignment
from app.modhub.modules.hierarchy.nodes import Catalog, CatalogEntry, check_hierarchy_type

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modhub.models import User


def _entry_from_module(m: CatalogModule, *, name: str | None = None) -> CatalogEntry:
    legacy = tuple(str(x) for x in (m.legacy_ids or []) if x)
    return CatalogEntry(
        canonical_key=m.key,
        display_name=name or m.name,
        href=m.href or "",
        description=m.description or "",
        legacy_ids=legacy,
    )


def load_available_catalog(s: "Session") -> Catalog:
    rows = (
        s.query(CatalogModule)
        .filter(CatalogModule.is_active.is_(True))
        .order_by(CatalogModule.sort_order.asc(), CatalogModule.id.asc())
        .all()
    )
    return [_entry_from_module(m) for m in rows]


def load_assigned_catalog(s: "Session", user_id: int) -> Catalog:
    """
    Active grants for `user_id`, in grant order.
    Display name comes from the assignment (it carries shared renames); href,
    description and legacy ids come from catalog_modules when the key is known there.
    """
    assignments = (
        s.query(ModuleAssignment)
        .filter(ModuleAssignment.assigned_user_id == user_id)
        .filter(ModuleAssignment.is_active.is_(True))
        .order_by(ModuleAssignment.assigned_at.asc(), ModuleAssignment.id.asc())
        .all()
    )
    if not assignments:
        return []
    keys = {a.module_key for a in assignments}
    modules = {m.key: m for m in s.query(CatalogModule).filter(CatalogModule.key.in_(keys)).all()}

    catalog: Catalog = []
    seen: set[str] = set()
    for a in assignments:
        if a.module_key in seen:
            continue
        seen.add(a.module_key)
        m = modules.get(a.module_key)
        if m is not None:
            catalog.append(_entry_from_module(m, name=a.module_name))
        else:
            catalog.append(CatalogEntry(canonical_key=a.module_key, display_name=a.module_name))
    return catalog


def load_catalog(s: "Session", hierarchy_type: str, user_id: int | None) -> Catalog:
    if check_hierarchy_type(hierarchy_type) == "available":
        return load_available_catalog(s)
    if user_id is None:
        return []
    return load_assigned_catalog(s, user_id)


def rename_assignments(s: "Session", module_key: str, new_name: str, actor: "User | None" = None) -> int:
    """Set module_name on every assignment of `module_key`, for all users."""
    rows = s.query(ModuleAssignment).filter(ModuleAssignment.module_key == module_key).all()
    now = datetime.utcnow()
    for a in rows:
        a.module_name = new_name
        a.updated_at = now

    record_event(
        s,
        actor=actor,
        action="module.rename_shared",
        entity_type="ModuleAssignment",
        entity_id=module_key,
        metadata={"module_key": module_key, "name": new_name, "rows": len(rows)},
    )
    return len(rows)
