import pytest
from flask import Flask

from app.modhub.audit import record_event
from app.modhub.db import engine_options, init_db, session_scope
from app.modhub.models import AuditEvent, Base, User


def test_sqlite_connections_shareable_across_threads():
    opts = engine_options("sqlite:///x.db")
    assert opts["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in opts


def test_postgres_pool_settings():
    opts = engine_options("postgresql+psycopg2://u:p@db/modhub")
    assert opts["pool_recycle"] == 1800
    assert "connect_args" not in opts


@pytest.fixture()
def app(tmp_path):
    app = Flask(__name__)
    app.config["DATABASE_URL"] = f"sqlite:///{tmp_path/'db.sqlite'}"
    init_db(app)
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


def test_session_scope_commits_and_rolls_back(app):
    with session_scope(app) as s:
        s.add(User(email="a@example.com", password_hash="x"))

    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            s.add(User(email="b@example.com", password_hash="x"))
            raise RuntimeError("boom")

    with session_scope(app) as s:
        assert [u.email for u in s.query(User).all()] == ["a@example.com"]


def test_record_event_outside_request(app):
    with session_scope(app) as s:
        user = User(email="a@example.com", password_hash="x")
        s.add(user)
        s.flush()
        record_event(s, actor=user, action="module.rename_shared", entity_id="orders", metadata={"rows": 2})

    with session_scope(app) as s:
        ev = s.query(AuditEvent).one()
    assert ev.request_id is None
    assert ev.actor_user_email == "a@example.com"
    assert ev.metadata_json == '{"rows": 2}'
