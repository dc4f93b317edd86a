import atexit
import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv

from app.modhub.config import load_config
from app.modhub.db import init_db, teardown_db_session
from app.modhub.routes import bp as routes_bp
from app.modhub.auth import bp as auth_bp, load_current_user
from app.modhub.modules.hierarchy.admin import bp as hierarchy_bp
from app.modhub.modules.hierarchy.service import init_hierarchy


def create_app(*, timer_factory=None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    registry = init_hierarchy(app, timer_factory=timer_factory)
    if app.config.get("CACHE_BACKEND") == "file":
        app.logger.info("Hierarchy local cache at %s", app.config.get("CACHE_ROOT"))

    # Debounced remote writes still pending at shutdown go out before exit.
    atexit.register(registry.close_all)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(hierarchy_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"ok": False, "error": "Internal server error.", "request_id": rid}), 500

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"ok": False, "error": "Request body too large."}), 413

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
