from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import Flask

from app.modhub.db import session_scope
from app.modhub.modules.hierarchy.models import HierarchyState


@dataclass(frozen=True)
class RemoteRecord:
    hierarchy: Any
    custom_names: Any


class RemoteStore:
    """Remote copy of hierarchies addressed by (owner, hierarchy type)."""

    def fetch(self, owner_id: int, hierarchy_type: str) -> RemoteRecord | None:
        raise NotImplementedError

    def upsert(self, owner_id: int, hierarchy_type: str, hierarchy: list, custom_names: dict) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class SqlRemoteStore(RemoteStore):
    """
    module_hierarchy_states backed store.
    Uses its own session per call: writes run on debounce timer threads, outside any request.
    """

    app: Flask

    def fetch(self, owner_id: int, hierarchy_type: str) -> RemoteRecord | None:
        with session_scope(self.app) as s:
            row = (
                s.query(HierarchyState)
                .filter(HierarchyState.owner_user_id == owner_id)
                .filter(HierarchyState.type == hierarchy_type)
                .one_or_none()
            )
            if row is None:
                return None
            return RemoteRecord(hierarchy=row.hierarchy, custom_names=row.custom_names)

    def upsert(self, owner_id: int, hierarchy_type: str, hierarchy: list, custom_names: dict) -> None:
        now = datetime.utcnow()
        with session_scope(self.app) as s:
            row = (
                s.query(HierarchyState)
                .filter(HierarchyState.owner_user_id == owner_id)
                .filter(HierarchyState.type == hierarchy_type)
                .one_or_none()
            )
            if row is None:
                row = HierarchyState(owner_user_id=owner_id, type=hierarchy_type, created_at=now)
                s.add(row)
            row.hierarchy = hierarchy
            row.custom_names = custom_names
            row.updated_at = now
