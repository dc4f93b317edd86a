import pytest
from werkzeug.security import generate_password_hash

from fakes import ManualTimers

from app.modhub import create_app
from app.modhub.db import session_scope
from app.modhub.models import AuditEvent, Base, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CACHE_BACKEND", "memory")

    app = create_app(timer_factory=ManualTimers())

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200


def test_login_and_hierarchy_access(client):
    # Anonymous is rejected
    r = client.get("/api/hierarchy/available")
    assert r.status_code == 401
    assert r.json["ok"] is False

    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/api/hierarchy/available")
    assert r.status_code == 200
    assert r.json["type"] == "available"


def test_bad_login_is_audited(app, client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login_failed" in actions


def test_logout_clears_identity(client):
    client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    r = client.post("/auth/logout")
    assert r.json["ok"] is True
    r = client.get("/api/hierarchy/assigned")
    assert r.status_code == 401
