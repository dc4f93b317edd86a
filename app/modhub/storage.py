from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path


class CacheError(RuntimeError):
    pass


@dataclass(frozen=True)
class CacheNamespaces:
    """Namespace identifiers for the local cache entries."""

    available: str = "module_hierarchy_available"
    assigned: str = "module_hierarchy_assigned"
    custom_names: str = "custom_module_names_v2"

    def for_type(self, hierarchy_type: str) -> str:
        if hierarchy_type == "available":
            return self.available
        if hierarchy_type == "assigned":
            return self.assigned
        raise ValueError(f"Unknown hierarchy type: {hierarchy_type!r}")


def _owner_segment(owner_id: int | str | None) -> str:
    return "anonymous" if owner_id is None else str(owner_id)


class LocalCache:
    """Key/value text store addressed by (owner, namespace)."""

    def get_text(self, owner_id: int | str | None, namespace: str) -> str | None:
        raise NotImplementedError

    def put_text(self, owner_id: int | str | None, namespace: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, owner_id: int | str | None, namespace: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class FileCache(LocalCache):
    root: Path

    def _path(self, owner_id: int | str | None, namespace: str) -> Path:
        safe_ns = namespace.strip().replace("/", "_").replace("\\", "_")
        if not safe_ns:
            raise CacheError("Cache namespace must not be empty.")
        return self.root / _owner_segment(owner_id) / f"{safe_ns}.json"

    def get_text(self, owner_id: int | str | None, namespace: str) -> str | None:
        p = self._path(owner_id, namespace)
        if not p.exists():
            return None
        try:
            return p.read_text(encoding="utf-8")
        except OSError as e:
            raise CacheError(f"Cannot read cache entry {p}: {e}") from e

    def put_text(self, owner_id: int | str | None, namespace: str, value: str) -> None:
        p = self._path(owner_id, namespace)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp = p.with_suffix(".json.tmp")
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(p)
        except OSError as e:
            raise CacheError(f"Cannot write cache entry {p}: {e}") from e

    def delete(self, owner_id: int | str | None, namespace: str) -> None:
        p = self._path(owner_id, namespace)
        if p.exists():
            p.unlink()


@dataclass
class MemoryCache(LocalCache):
    entries: dict[tuple[str, str], str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_text(self, owner_id: int | str | None, namespace: str) -> str | None:
        with self._lock:
            return self.entries.get((_owner_segment(owner_id), namespace))

    def put_text(self, owner_id: int | str | None, namespace: str, value: str) -> None:
        with self._lock:
            self.entries[(_owner_segment(owner_id), namespace)] = value

    def delete(self, owner_id: int | str | None, namespace: str) -> None:
        with self._lock:
            self.entries.pop((_owner_segment(owner_id), namespace), None)


def namespaces_from_config(config: dict) -> CacheNamespaces:
    defaults = CacheNamespaces()
    return CacheNamespaces(
        available=(config.get("CACHE_NS_AVAILABLE") or defaults.available).strip(),
        assigned=(config.get("CACHE_NS_ASSIGNED") or defaults.assigned).strip(),
        custom_names=(config.get("CACHE_NS_CUSTOM_NAMES") or defaults.custom_names).strip(),
    )


def cache_from_config(config: dict) -> LocalCache:
    backend = (config.get("CACHE_BACKEND") or "file").strip().lower()
    if backend == "memory":
        return MemoryCache()
    # default file
    root = Path(config.get("CACHE_ROOT") or (Path(os.getcwd()) / "cache"))
    return FileCache(root=root)
