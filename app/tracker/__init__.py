import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, request

from app.tracker.api import Api
from app.tracker.auth import bp as auth_bp, load_current_user, renew_session_cookie
from app.tracker.config import load_config
from app.tracker.db import init_db, session_scope, teardown_db_session
from app.tracker.migration import MigrationContext, migrate
from app.tracker.models import Base
from app.tracker.modules.initiatives.admin import bp as initiatives_bp
from app.tracker.modules.organisations.admin import bp as organisations_bp
from app.tracker.modules.people.admin import bp as people_bp
from app.tracker.routes import bp as routes_bp, register_error_handlers
from app.tracker.storage import AssetStore


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    data_dir = Path(app.config["DATA_DIR"])
    data_dir.mkdir(parents=True, exist_ok=True)

    init_db(app)
    app.extensions["asset_store"] = AssetStore(Path(app.config["ASSET_DIR"]), app.config["FILE_SIZE_LIMIT"])

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Schema: create missing tables, then upgrade older databases in place.
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    applied = migrate(MigrationContext(engine, data_dir), Path(app.config["MIGRATIONS_DIR"]))
    if applied:
        app.logger.info("Applied migrations: %s", ", ".join(applied))

    with session_scope(app) as s:
        Api(session=s, assets=app.extensions["asset_store"]).sessions.remove_expired()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(initiatives_bp, url_prefix="/api")
    app.register_blueprint(organisations_bp, url_prefix="/api")
    app.register_blueprint(people_bp, url_prefix="/api")
    register_error_handlers(app)

    def _load_user_wrapper():
        if request.path.startswith("/health"):
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.after_request(renew_session_cookie)
    app.teardown_appcontext(teardown_db_session)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
