from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def engine_options(db_url: str) -> dict[str, object]:
    """create_engine() kwargs per dialect."""
    opts: dict[str, object] = {"pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    elif db_url.startswith("sqlite"):
        # Debounced hierarchy writes run on timer threads, not the thread that opened the connection.
        opts["connect_args"] = {"check_same_thread": False}
    return opts


def init_db(app: Flask) -> None:
    engine = create_engine(app.config["DATABASE_URL"], **engine_options(app.config["DATABASE_URL"]))
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    app.logger.info("Database engine ready (dialect=%s)", engine.dialect.name)


def _sessionmaker(app: Flask) -> sessionmaker[Session]:
    return app.extensions["sqlalchemy_sessionmaker"]


def db_session() -> Session:
    """Request-scoped session, closed by teardown_db_session."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = g.db_session = _sessionmaker(current_app)()
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Session outside a request (timer threads, fan-out, scripts, tests).
    Commits on success, rolls back on error.
    """
    s = _sessionmaker(app)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
