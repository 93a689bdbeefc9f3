import logging
import os

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.bizadmin.config import load_config
from app.bizadmin.db import init_db, teardown_db_session
from app.bizadmin.errors import ServiceError
from app.bizadmin.mailer import init_mailer
from app.bizadmin.routes import bp as routes_bp
from app.bizadmin.auth import bp as auth_bp, load_current_user
from app.bizadmin.modules.catalog.admin import bp as catalog_bp
from app.bizadmin.modules.roles.admin import bp as roles_bp
from app.bizadmin.modules.users.admin import bp as users_bp
from app.bizadmin.modules.clients.admin import bp as clients_bp
from app.bizadmin.utils import envelope

API_PREFIX = "/api/v1"


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False

    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("JWT_SECRET") or str(app.config["JWT_SECRET"]) in ("", "change-me"):
            raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")

    init_db(app)
    init_mailer(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(catalog_bp, url_prefix=API_PREFIX)
    app.register_blueprint(roles_bp, url_prefix=API_PREFIX)
    app.register_blueprint(users_bp, url_prefix=API_PREFIX)
    app.register_blueprint(clients_bp, url_prefix=API_PREFIX)

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ServiceError)
    def _err_service(e: ServiceError):  # type: ignore[no-redef]
        if e.code == 403:
            app.logger.warning(
                "Forbidden: missing_permission=%s request_id=%s",
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        return jsonify(e.to_envelope()), e.code

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify(envelope(e.code or 500, e.description or e.name, include_data=False)), e.code or 500

    @app.errorhandler(Exception)
    def _err_unhandled(e: Exception):  # type: ignore[no-redef]
        app.logger.exception(
            "Unhandled error on %s %s (request_id=%s)", request.method, request.path, getattr(g, "request_id", None)
        )
        return jsonify(envelope(500, "Internal server error", include_data=False)), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
