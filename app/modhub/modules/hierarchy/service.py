from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.modhub.modules.hierarchy import mutate
from app.modhub.modules.hierarchy.merge import default_forest, merge_forest
from app.modhub.modules.hierarchy.names import (
    CustomNames,
    apply_overrides,
    custom_names_to_json,
    rename,
    resolve_module_info,
)
from app.modhub.modules.hierarchy.nodes import (
    Catalog,
    Folder,
    Forest,
    HierarchyError,
    check_hierarchy_type,
    forest_to_json,
)
from app.modhub.modules.hierarchy.persistence import LoadedState, PersistenceCoordinator, RetryPolicy, TimerFactory

if TYPE_CHECKING:
    from flask import Flask

logger = logging.getLogger(__name__)


class NodeNotFound(HierarchyError):
    pass


@dataclass
class LoadTicket:
    """Set cancelled when the owning session is closed or reloaded."""

    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class HierarchySession:
    """
    One user's live hierarchy of one type.

    Holds the in-memory forest, routes every edit through the pure mutators and
    hands the result to the PersistenceCoordinator.
    """

    def __init__(
        self,
        hierarchy_type: str,
        coordinator: PersistenceCoordinator,
        *,
        catalog_provider: Callable[[], Catalog] | None = None,
        fan_out: Callable[[str, str], int] | None = None,
        new_id: Callable[[], str] = mutate.new_folder_id,
    ) -> None:
        self.hierarchy_type = check_hierarchy_type(hierarchy_type)
        self.coordinator = coordinator
        self.forest: Forest = []
        self.custom_names: CustomNames = {}
        self.catalog: Catalog = []
        self.catalog_ready = False
        self.is_loaded = False
        self.dragged_id: str | None = None
        self._catalog_provider = catalog_provider
        self._fan_out = fan_out
        self._new_id = new_id
        self._ticket: LoadTicket | None = None
        self._lock = threading.RLock()

    # ---------- Catalog ----------
    def set_catalog(self, catalog: Catalog, *, ready: bool = True) -> None:
        with self._lock:
            self.catalog = list(catalog)
            self.catalog_ready = ready
            if self.is_loaded and ready:
                self.forest = self._merge(self.forest)

    def refresh_catalog(self) -> bool:
        """Pull the catalog from the provider; a failure leaves it not ready."""
        if self._catalog_provider is None:
            return self.catalog_ready
        try:
            catalog = self._catalog_provider()
        except Exception:
            logger.exception("Catalog load failed for %s hierarchy", self.hierarchy_type)
            with self._lock:
                self.catalog_ready = False
            return False
        self.set_catalog(catalog, ready=True)
        return True

    def _merge(self, forest: Forest) -> Forest:
        if not self.catalog_ready:
            logger.info("Catalog not ready; keeping %s hierarchy as loaded", self.hierarchy_type)
            return forest
        return merge_forest(self.hierarchy_type, forest, self.catalog)

    # ---------- Load ----------
    def begin_load(self) -> LoadTicket:
        with self._lock:
            if self._ticket is not None:
                self._ticket.cancel()
            self._ticket = LoadTicket()
            return self._ticket

    def apply_loaded(self, ticket: LoadTicket, state: LoadedState) -> bool:
        with self._lock:
            if ticket.cancelled or ticket is not self._ticket:
                logger.info("Discarding stale %s hierarchy load", self.hierarchy_type)
                return False
            self._ticket = None
            self.custom_names = dict(state.custom_names)
            if state.forest is None:
                self.forest = default_forest(self.catalog)
            else:
                self.forest = self._merge(state.forest)
            self.is_loaded = True
            logger.info(
                "Loaded %s hierarchy from %s (%d root nodes)", self.hierarchy_type, state.source, len(self.forest)
            )
            return True

    def load(self) -> bool:
        ticket = self.begin_load()
        state = self.coordinator.load()
        return self.apply_loaded(ticket, state)

    def close(self) -> None:
        """Cancel an in-flight load and push any pending remote write."""
        with self._lock:
            if self._ticket is not None:
                self._ticket.cancel()
                self._ticket = None
        self.coordinator.flush()

    # ---------- Edits ----------
    def _commit(self, forest: Forest) -> Forest:
        if forest is self.forest:
            return forest
        self.forest = forest
        self.coordinator.save(forest, self.custom_names)
        return forest

    def _require(self, node_id: str):
        node = mutate.find_node(self.forest, node_id)
        if node is None:
            raise NodeNotFound(f"No hierarchy node with id {node_id!r}")
        return node

    def drag_start(self, node_id: str) -> None:
        with self._lock:
            self._require(node_id)
            self.dragged_id = node_id

    def drag_end(self) -> None:
        with self._lock:
            self.dragged_id = None

    def drop(self, target_id: str) -> Forest:
        with self._lock:
            dragged, self.dragged_id = self.dragged_id, None
            if dragged is None:
                return self.forest
            return self._commit(mutate.drop_onto(dragged, target_id, self.forest, new_id=self._new_id))

    def drop_between(self, index: int) -> Forest:
        with self._lock:
            dragged, self.dragged_id = self.dragged_id, None
            if dragged is None:
                return self.forest
            return self._commit(mutate.drop_between(self.forest, dragged, index))

    def toggle_folder(self, folder_id: str) -> Forest:
        with self._lock:
            return self._commit(mutate.toggle_folder(self.forest, folder_id))

    def move_up(self, node_id: str) -> Forest:
        with self._lock:
            return self._commit(mutate.move_up(self.forest, node_id))

    def move_down(self, node_id: str) -> Forest:
        with self._lock:
            return self._commit(mutate.move_down(self.forest, node_id))

    def reorder(self, source_id: str, target_id: str) -> Forest:
        with self._lock:
            return self._commit(mutate.reorder(self.forest, source_id, target_id))

    def add_to_folder(self, node_id: str, folder_id: str) -> Forest:
        with self._lock:
            return self._commit(mutate.add_to_folder(self.forest, node_id, folder_id))

    def remove_from_folder(self, node_id: str) -> Forest:
        with self._lock:
            return self._commit(mutate.remove_from_folder(self.forest, node_id))

    def create_folder(self, name: str, description: str = "") -> Folder:
        with self._lock:
            forest, folder = mutate.create_folder(self.forest, name, description, new_id=self._new_id)
            self._commit(forest)
            return folder

    def rename(self, node_id: str, new_name: str, new_description: str) -> None:
        with self._lock:
            node = self._require(node_id)
            self.custom_names = rename(self.custom_names, node, new_name, new_description, fan_out=self._fan_out)
            forest = self.forest
            if isinstance(node, Folder):
                forest = mutate.rename_folder(forest, node_id, new_name, new_description)
            self.forest = forest
            self.coordinator.save(forest, self.custom_names)

    def replace(self, forest: Forest) -> Forest:
        with self._lock:
            return self._commit(list(forest))

    # ---------- Views ----------
    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "type": self.hierarchy_type,
                "isLoaded": self.is_loaded,
                "catalogReady": self.catalog_ready,
                "draggedId": self.dragged_id,
                "hierarchy": forest_to_json(apply_overrides(self.forest, self.custom_names)),
                "customNames": custom_names_to_json(self.custom_names),
            }

    def module_info(self, module_key: str, default_name: str = "", default_description: str = "") -> tuple[str, str]:
        with self._lock:
            return resolve_module_info(module_key, default_name, default_description, self.custom_names, self.forest)


class SessionRegistry:
    """
    Live sessions keyed by (owner id, hierarchy type).

    Sessions are built outside the registry lock (building queries the catalog
    and loads persisted state). Sessions unused for `max_idle_seconds` are
    closed, which flushes their pending writes, on the next get().
    """

    def __init__(
        self,
        factory: Callable[[int | None, str], HierarchySession],
        *,
        max_idle_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._max_idle = max_idle_seconds
        self._clock = clock
        self._sessions: dict[tuple[int | None, str], HierarchySession] = {}
        self._last_used: dict[tuple[int | None, str], float] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: int | None, hierarchy_type: str) -> HierarchySession:
        key = (owner_id, check_hierarchy_type(hierarchy_type))
        self.evict_idle()
        with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                self._last_used[key] = self._clock()
                return session

        built = self._factory(owner_id, key[1])
        with self._lock:
            session = self._sessions.setdefault(key, built)
            self._last_used[key] = self._clock()
        if session is not built:
            # Lost a concurrent build for the same key.
            built.close()
        return session

    def evict_idle(self) -> int:
        if self._max_idle is None:
            return 0
        cutoff = self._clock() - self._max_idle
        with self._lock:
            stale = [k for k, used in self._last_used.items() if used < cutoff]
            sessions = [self._sessions.pop(k) for k in stale if k in self._sessions]
            for k in stale:
                del self._last_used[k]
        for s in sessions:
            s.close()
        if sessions:
            logger.info("Evicted %d idle hierarchy sessions", len(sessions))
        return len(sessions)

    def discard(self, owner_id: int | None, hierarchy_type: str) -> None:
        key = (owner_id, hierarchy_type)
        with self._lock:
            session = self._sessions.pop(key, None)
            self._last_used.pop(key, None)
        if session is not None:
            session.close()

    def flush_all(self) -> int:
        with self._lock:
            sessions = list(self._sessions.values())
        return sum(1 for s in sessions if s.coordinator.flush())

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._last_used.clear()
        for s in sessions:
            s.close()


def build_session(app: "Flask", owner_id: int | None, hierarchy_type: str) -> HierarchySession:
    """Wire a session to the app's cache, database and configuration, then load it."""
    from app.modhub.db import session_scope
    from app.modhub.models import User
    from app.modhub.modules.hierarchy.catalog import load_catalog, rename_assignments
    from app.modhub.modules.hierarchy.store import SqlRemoteStore
    from app.modhub.storage import namespaces_from_config

    cfg = app.config

    def catalog_provider() -> Catalog:
        with session_scope(app) as s:
            return load_catalog(s, hierarchy_type, owner_id)

    def fan_out(module_key: str, new_name: str) -> int:
        with session_scope(app) as s:
            actor = s.get(User, owner_id) if owner_id is not None else None
            return rename_assignments(s, module_key, new_name, actor)

    coordinator = PersistenceCoordinator(
        hierarchy_type,
        cache=app.extensions["hierarchy_cache"],
        remote=SqlRemoteStore(app),
        owner_id=lambda: owner_id,
        catalog=catalog_provider,
        namespaces=namespaces_from_config(cfg),
        debounce_seconds=int(cfg.get("HIERARCHY_DEBOUNCE_MS", 400)) / 1000.0,
        retry=RetryPolicy(
            max_attempts=max(1, int(cfg.get("HIERARCHY_RETRY_ATTEMPTS", 3))),
            base_delay=int(cfg.get("HIERARCHY_RETRY_BASE_MS", 1000)) / 1000.0,
            max_delay=int(cfg.get("HIERARCHY_RETRY_MAX_MS", 30000)) / 1000.0,
        ),
        timer_factory=app.extensions.get("hierarchy_timer_factory"),
    )
    session = HierarchySession(
        hierarchy_type,
        coordinator,
        catalog_provider=catalog_provider,
        fan_out=fan_out,
    )
    session.refresh_catalog()
    session.load()
    return session


def init_hierarchy(app: "Flask", *, timer_factory: TimerFactory | None = None) -> SessionRegistry:
    from app.modhub.storage import cache_from_config

    app.extensions["hierarchy_cache"] = cache_from_config(app.config)
    if timer_factory is not None:
        app.extensions["hierarchy_timer_factory"] = timer_factory
    idle = int(app.config.get("HIERARCHY_SESSION_IDLE_SECONDS", 8 * 60 * 60))
    registry = SessionRegistry(
        lambda owner_id, hierarchy_type: build_session(app, owner_id, hierarchy_type),
        max_idle_seconds=idle if idle > 0 else None,
    )
    app.extensions["hierarchy_sessions"] = registry
    return registry


def get_registry(app: "Flask") -> SessionRegistry:
    return app.extensions["hierarchy_sessions"]
