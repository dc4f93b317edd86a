import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    cache_backend: str
    cache_root: str
    cache_ns_available: str
    cache_ns_assigned: str
    cache_ns_custom_names: str

    debounce_ms: int
    retry_attempts: int
    retry_base_ms: int
    retry_max_ms: int
    session_idle_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///modhub.db"),
        cache_backend=_getenv("CACHE_BACKEND", "file"),
        cache_root=_getenv("CACHE_ROOT", os.path.join(os.getcwd(), "cache")),
        cache_ns_available=_getenv("CACHE_NS_AVAILABLE", "module_hierarchy_available"),
        cache_ns_assigned=_getenv("CACHE_NS_ASSIGNED", "module_hierarchy_assigned"),
        cache_ns_custom_names=_getenv("CACHE_NS_CUSTOM_NAMES", "custom_module_names_v2"),
        debounce_ms=_getint("HIERARCHY_DEBOUNCE_MS", 400),
        retry_attempts=_getint("HIERARCHY_RETRY_ATTEMPTS", 3),
        retry_base_ms=_getint("HIERARCHY_RETRY_BASE_MS", 1000),
        retry_max_ms=_getint("HIERARCHY_RETRY_MAX_MS", 30000),
        session_idle_seconds=_getint("HIERARCHY_SESSION_IDLE_SECONDS", 8 * 60 * 60),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "CACHE_BACKEND": s.cache_backend,
        "CACHE_ROOT": s.cache_root,
        "CACHE_NS_AVAILABLE": s.cache_ns_available,
        "CACHE_NS_ASSIGNED": s.cache_ns_assigned,
        "CACHE_NS_CUSTOM_NAMES": s.cache_ns_custom_names,
        "HIERARCHY_DEBOUNCE_MS": s.debounce_ms,
        "HIERARCHY_RETRY_ATTEMPTS": s.retry_attempts,
        "HIERARCHY_RETRY_BASE_MS": s.retry_base_ms,
        "HIERARCHY_RETRY_MAX_MS": s.retry_max_ms,
        # 0 disables eviction of idle live sessions
        "HIERARCHY_SESSION_IDLE_SECONDS": s.session_idle_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # hierarchy payloads are small; 1MB is plenty
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
