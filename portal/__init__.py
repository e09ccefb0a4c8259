"""
Client Engagement Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from portal.config import config
from portal.models import db
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits
from portal.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can refuse to start without required env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── External collaborators (replaceable via app.extensions in tests) ─
    from portal.services.notification import init_notifications
    from portal.services.progress_cache import init_progress_cache
    from portal.integrations.identity_gateway import init_identity_provider

    init_notifications(app)
    init_progress_cache(app)
    init_identity_provider(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from portal.models import client as _client_models       # noqa: F401
    from portal.models import delivery as _delivery_models   # noqa: F401
    from portal.models import revision as _revision_models   # noqa: F401
    from portal.models import progress as _progress_models   # noqa: F401
    from portal.models import audit as _audit_models         # noqa: F401
    from portal.models import teardown as _teardown_models   # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "production":
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints.client_bp import client_bp
    from portal.blueprints.delivery_bp import delivery_bp
    from portal.blueprints.revision_bp import revision_bp
    from portal.blueprints.progress_bp import progress_bp
    from portal.blueprints.health_bp import health_bp

    app.register_blueprint(client_bp)
    app.register_blueprint(delivery_bp)
    app.register_blueprint(revision_bp)
    app.register_blueprint(progress_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)

    # ── Scheduled jobs / CLI commands ────────────────────────────────────
    from portal.services.scheduler_service import run_job
    from portal.services import scheduled_jobs as _scheduled_jobs  # noqa: F401

    @app.cli.command("retry-orphaned-identities")
    def retry_orphaned_identities_cmd():
        """Re-attempt identity provider deletion for every queued orphaned identity."""
        outcome = run_job(app, "orphaned_identity_retry")
        logger.info("orphaned_identity_retry: %s", outcome)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
