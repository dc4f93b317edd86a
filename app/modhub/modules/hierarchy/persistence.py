"""
Local + remote persistence for one (owner, hierarchy type) stream.

save() writes the local cache synchronously and hands the state to a
CoalescingWriter: one re-armable timer slot, so a burst of edits inside the
quiet period becomes a single remote write carrying the last state.

Failed remote writes are retried with bounded exponential backoff in the same
timer slot; a newer save always supersedes a pending retry. When the retries
run out the failure is logged and the local cache stays the session's copy.
"""
from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.modhub.modules.hierarchy.names import (
    CustomNames,
    custom_names_from_json,
    custom_names_to_json,
    dump_custom_names,
    parse_custom_names,
)
from app.modhub.modules.hierarchy.nodes import (
    Catalog,
    Forest,
    ForestFormatError,
    check_hierarchy_type,
    dump_forest,
    forest_from_json,
    forest_to_json,
    parse_forest,
)
from app.modhub.modules.hierarchy.normalize import normalize_forest
from app.modhub.modules.hierarchy.store import RemoteStore
from app.modhub.storage import CacheError, CacheNamespaces, LocalCache

logger = logging.getLogger(__name__)


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def thread_timer(interval: float, fn: Callable[[], None]) -> Timer:
    t = threading.Timer(interval, fn)
    t.daemon = True
    return t


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3  # total attempts, first one included
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, failed_attempts: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** max(0, failed_attempts - 1)))


_NOTHING = object()


class CoalescingWriter:
    """Debounced single-slot write queue: the last submitted payload wins."""

    def __init__(
        self,
        write: Callable[[Any], None],
        delay: float,
        *,
        retry: RetryPolicy | None = None,
        timer_factory: TimerFactory | None = None,
        name: str = "writer",
    ) -> None:
        self._write = write
        self._delay = delay
        self._retry = retry or RetryPolicy()
        self._timer_factory = timer_factory or thread_timer
        self._name = name
        self._lock = threading.RLock()
        # Held for the whole write so an older payload can never land after a newer one.
        self._write_lock = threading.Lock()
        self._timer: Timer | None = None
        self._pending: Any = _NOTHING
        self._generation = 0
        self._failures = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not _NOTHING

    def submit(self, payload: Any) -> None:
        with self._lock:
            self._pending = payload
            self._failures = 0
            self._generation += 1
            self._arm(self._delay)

    def _arm(self, delay: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        gen = self._generation
        self._timer = self._timer_factory(delay, lambda: self._fire(gen))
        self._timer.start()

    def _fire(self, gen: int) -> None:
        with self._write_lock:
            with self._lock:
                # Re-checked after waiting on a running write: a superseded payload is dropped.
                if gen != self._generation or self._pending is _NOTHING:
                    return
                payload = self._pending
                self._pending = _NOTHING
                self._timer = None
            self._write_once(gen, payload)

    def _write_once(self, gen: int, payload: Any) -> None:
        try:
            self._write(payload)
        except Exception as e:
            with self._lock:
                if gen != self._generation or self._pending is not _NOTHING:
                    # A newer payload is queued; it carries this one's state.
                    return
                self._failures += 1
                if self._failures >= self._retry.max_attempts:
                    logger.error(
                        "%s: giving up after %d attempts: %s", self._name, self._failures, e
                    )
                    self._failures = 0
                    return
                delay = self._retry.delay_for(self._failures)
                logger.warning(
                    "%s: write failed (attempt %d/%d), retrying in %.2fs: %s",
                    self._name,
                    self._failures,
                    self._retry.max_attempts,
                    delay,
                    e,
                )
                self._pending = payload
                self._arm(delay)

    def flush(self) -> bool:
        """Run a pending write now, on the calling thread."""
        with self._lock:
            if self._pending is _NOTHING:
                return False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            gen = self._generation
        self._fire(gen)
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = _NOTHING
            self._generation += 1


@dataclass
class LoadedState:
    forest: Forest | None
    custom_names: CustomNames = field(default_factory=dict)
    source: str = "none"  # "remote" | "local" | "none"


@dataclass(frozen=True)
class _Snapshot:
    owner_id: int
    forest: Forest
    custom_names: CustomNames


def _serialize_remote(hierarchy: list, custom_names: dict) -> str:
    return json.dumps({"hierarchy": hierarchy, "customNames": custom_names}, ensure_ascii=False, sort_keys=True)


class PersistenceCoordinator:
    def __init__(
        self,
        hierarchy_type: str,
        *,
        cache: LocalCache,
        remote: RemoteStore,
        owner_id: Callable[[], int | None],
        catalog: Callable[[], Catalog],
        namespaces: CacheNamespaces | None = None,
        debounce_seconds: float = 0.4,
        retry: RetryPolicy | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        self.hierarchy_type = check_hierarchy_type(hierarchy_type)
        self.cache = cache
        self.remote = remote
        self.namespaces = namespaces or CacheNamespaces()
        self._owner_id = owner_id
        self._catalog = catalog
        self._last_written: str | None = None
        self._writer = CoalescingWriter(
            self._write_remote,
            debounce_seconds,
            retry=retry,
            timer_factory=timer_factory,
            name=f"hierarchy[{self.hierarchy_type}]",
        )

    @property
    def namespace(self) -> str:
        return self.namespaces.for_type(self.hierarchy_type)

    @property
    def pending(self) -> bool:
        return self._writer.pending

    # ---------- Save ----------
    def save(self, forest: Forest, custom_names: CustomNames) -> None:
        owner = self._owner_id()
        self._write_local(owner, forest, custom_names)
        if owner is None:
            logger.debug("No owner identity; skipping remote %s hierarchy write", self.hierarchy_type)
            return
        self._writer.submit(_Snapshot(owner_id=owner, forest=list(forest), custom_names=dict(custom_names)))

    def _write_local(self, owner: int | None, forest: Forest, custom_names: CustomNames) -> None:
        try:
            self.cache.put_text(owner, self.namespace, dump_forest(forest))
            self.cache.put_text(owner, self.namespaces.custom_names, dump_custom_names(self._merged_names(owner, custom_names)))
        except Exception:
            logger.exception("Local %s hierarchy write failed (owner=%s)", self.hierarchy_type, owner)

    def _merged_names(self, owner: int | None, custom_names: CustomNames) -> CustomNames:
        """The local names entry is shared by both hierarchy types; ours win on the same key."""
        try:
            stored = parse_custom_names(self.cache.get_text(owner, self.namespaces.custom_names))
        except CacheError as e:
            logger.warning("Local custom names unreadable; overwriting: %s", e)
            stored = {}
        return {**stored, **custom_names}

    def _current_catalog(self) -> Catalog:
        try:
            return self._catalog()
        except Exception as e:
            logger.warning("Catalog unavailable for %s hierarchy write: %s", self.hierarchy_type, e)
            return []

    def _write_remote(self, snap: _Snapshot) -> None:
        catalog = self._current_catalog()
        forest = normalize_forest(snap.forest, catalog) if catalog else snap.forest
        hierarchy = forest_to_json(forest)
        names = custom_names_to_json(snap.custom_names)
        serialized = _serialize_remote(hierarchy, names)
        if serialized == self._last_written:
            logger.debug("Remote %s hierarchy unchanged; skipping write", self.hierarchy_type)
            return
        self.remote.upsert(snap.owner_id, self.hierarchy_type, hierarchy, names)
        self._last_written = serialized
        logger.info("Remote %s hierarchy saved (owner=%s)", self.hierarchy_type, snap.owner_id)

    def flush(self) -> bool:
        return self._writer.flush()

    def cancel(self) -> None:
        self._writer.cancel()

    # ---------- Load ----------
    def load(self) -> LoadedState:
        """Best snapshot available; never raises for storage or format problems."""
        owner = self._owner_id()
        if owner is not None:
            state = self._load_remote(owner)
            if state is not None:
                return state
        return self._load_local(owner)

    def _load_remote(self, owner: int) -> LoadedState | None:
        try:
            record = self.remote.fetch(owner, self.hierarchy_type)
        except Exception as e:
            logger.warning("Remote %s hierarchy read failed (owner=%s): %s", self.hierarchy_type, owner, e)
            return None
        if record is None:
            return None
        try:
            forest = forest_from_json(record.hierarchy)
        except ForestFormatError as e:
            logger.warning("Remote %s hierarchy is malformed (owner=%s): %s", self.hierarchy_type, owner, e)
            return None
        names = custom_names_from_json(record.custom_names)
        self._last_written = _serialize_remote(forest_to_json(forest), custom_names_to_json(names))
        return LoadedState(forest=forest, custom_names=names, source="remote")

    def _load_local(self, owner: int | None) -> LoadedState:
        names: CustomNames = {}
        try:
            names = parse_custom_names(self.cache.get_text(owner, self.namespaces.custom_names))
        except CacheError as e:
            logger.warning("Local custom names read failed: %s", e)
        try:
            forest = parse_forest(self.cache.get_text(owner, self.namespace))
        except (CacheError, ForestFormatError) as e:
            logger.warning("Local %s hierarchy unreadable; using defaults: %s", self.hierarchy_type, e)
            return LoadedState(forest=None, custom_names=names)
        if forest is None:
            return LoadedState(forest=None, custom_names=names)
        return LoadedState(forest=forest, custom_names=names, source="local")
