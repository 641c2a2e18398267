import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.djtquest.auth import bp as auth_bp, load_current_user
from app.djtquest.config import load_config
from app.djtquest.db import init_db
from app.djtquest.errors import ServiceError
from app.djtquest.modules.curation.api import bp as curation_bp
from app.djtquest.modules.finance.api import bp as finance_bp
from app.djtquest.modules.forum.api import bp as forum_bp
from app.djtquest.modules.gamification.api import bp as gamification_bp
from app.djtquest.modules.quiz.api import bp as quiz_bp
from app.djtquest.modules.registration.api import bp as registration_bp
from app.djtquest.modules.reports.api import bp as reports_bp
from app.djtquest.modules.sepbook.api import bp as sepbook_bp
from app.djtquest.routes import bp as routes_bp

logger = logging.getLogger(__name__)

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")

# Tables the running code expects; missing ones mean `alembic upgrade head` was skipped.
_REQUIRED_TABLES = (
    "users",
    "challenges",
    "quiz_questions",
    "quiz_attempts",
    "user_quiz_answers",
    "quiz_versions",
    "finance_requests",
    "finance_request_items",
    "forum_topics",
    "forum_posts",
    "sepbook_posts",
    "pending_registrations",
    "notifications",
    "tier_progression_requests",
)

_BLUEPRINTS = (
    (routes_bp, None),
    (auth_bp, "/auth"),
    (gamification_bp, "/api/admin"),
    (quiz_bp, "/api/quiz"),
    (curation_bp, "/api/curation"),
    (finance_bp, "/api/finance"),
    (forum_bp, "/api/forum"),
    (sepbook_bp, "/api/sepbook"),
    (registration_bp, "/api/registration"),
    (reports_bp, "/api/reports"),
)


def _refuse_unsafe_production(app: Flask) -> None:
    if (app.config.get("ENV") or "").lower() not in ("prod", "production"):
        return
    db_url = str(app.config.get("DATABASE_URL") or "")
    problems = []
    if not db_url or db_url.startswith("sqlite"):
        problems.append("DATABASE_URL must point at Postgres")
    if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
        problems.append("SECRET_KEY must be set to a non-default value")
    if problems:
        raise RuntimeError("Refusing to start in production: " + "; ".join(problems))


def _warn_incomplete_storage(app: Flask) -> None:
    if app.config.get("STORAGE_BACKEND") != "s3":
        return
    unset = [k for k in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
    if unset:
        app.logger.error("S3 storage selected but %s not set; uploads will fail", ", ".join(unset))


def _dispose_pool_after_fork(app: Flask) -> None:
    # gunicorn --preload forks workers; inherited pooled connections must not be shared.
    if not hasattr(os, "register_at_fork"):
        return

    def _child() -> None:
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is not None:
            engine.dispose(close=False)

    os.register_at_fork(after_in_child=_child)


def _missing_tables(app: Flask) -> list[str]:
    try:
        existing = set(sa_inspect(app.extensions["sqlalchemy_engine"]).get_table_names())
    except SQLAlchemyError:
        app.logger.exception("Could not inspect database schema")
        return []
    if not existing:
        # Empty database: tests create tables after the app exists.
        return []
    return [t for t in _REQUIRED_TABLES if t not in existing]


def _install_request_hooks(app: Flask) -> None:
    from app.djtquest.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

    missing = _missing_tables(app)
    if missing:
        app.logger.error("Database schema is behind the code; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    @app.before_request
    def _schema_gate():
        if missing and request.path.startswith("/api/"):
            return jsonify({"error": "Schema out of date", "missing": missing}), 500
        return None

    @app.before_request
    def _csrf_gate():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True) or is_csrf_exempt(request):
            return None
        if not validate_csrf(request):
            return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    app.before_request(load_current_user)


def _rollback_request_session() -> None:
    s = g.get("db_session")
    if s is not None:
        s.rollback()


def _install_error_handlers(app: Flask) -> None:
    @app.errorhandler(ServiceError)
    def _service_error(e: ServiceError):
        _rollback_request_session()
        if e.status >= 500:
            app.logger.error("%s (request_id=%s)", e.message, g.get("request_id"))
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        if e.code == 403:
            missing = g.get("missing_permission")
            if missing:
                app.logger.warning("403 %s: missing %s (request_id=%s)", request.path, missing, g.get("request_id"))
            return jsonify({"error": "Forbidden", "missing_permission": missing}), 403
        if e.code == 413:
            return jsonify({"error": "Arquivo muito grande. Máximo de 50MB."}), 413
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        _rollback_request_session()
        rid = g.get("request_id")
        app.logger.exception("Unhandled error on %s %s (request_id=%s)", request.method, request.path, rid)
        return jsonify({"error": "Internal server error", "request_id": rid}), 500


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config.update(PERMANENT_SESSION_LIFETIME=timedelta(hours=8), SESSION_REFRESH_EACH_REQUEST=True)
    app.json.ensure_ascii = False

    _refuse_unsafe_production(app)
    init_db(app)
    _dispose_pool_after_fork(app)
    _warn_incomplete_storage(app)

    for blueprint, prefix in _BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=prefix)

    _install_request_hooks(app)
    _install_error_handlers(app)

    logger.info("DJT Quest app created (env=%s)", app.config.get("ENV"))
    return app
