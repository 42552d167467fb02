"""
Inspection Platform
Flask Application Factory.

Usage:
    from inspection_platform import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from inspection_platform.config import config
from inspection_platform.models import db
from inspection_platform.middleware.jwt_auth import init_jwt_middleware
from inspection_platform.middleware.logging_config import configure_logging
from inspection_platform.middleware.rate_limiter import init_rate_limits
from inspection_platform.middleware.timing import init_request_timing
from inspection_platform.utils.errors import E, api_error, register_error_handlers

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine

logger = logging.getLogger(__name__)


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
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
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

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so create_all / Alembic see them ───────────────
    from inspection_platform.models import organization as _organization_models  # noqa: F401
    from inspection_platform.models import auth as _auth_models                  # noqa: F401
    from inspection_platform.models import template as _template_models          # noqa: F401
    from inspection_platform.models import inspection as _inspection_models      # noqa: F401
    from inspection_platform.models import audit as _audit_models                # noqa: F401
    from inspection_platform.models import scheduling as _scheduling_models      # noqa: F401

    if config_name != "testing":
        with app.app_context():
            if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") \
                    and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
                os.makedirs(app.instance_path, exist_ok=True)
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from inspection_platform.blueprints.cron_bp import cron_bp
    from inspection_platform.blueprints.health_bp import health_bp
    from inspection_platform.blueprints.inspection_bp import inspection_bp

    app.register_blueprint(inspection_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        original = getattr(e, "original_exception", None) or e
        logger.error("500 error: %s", original, exc_info=original)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler (import jobs to register them) ─────────────────────────
    importlib.import_module("inspection_platform.services.scheduled_jobs")
    from inspection_platform.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if config_name != "testing":
        SchedulerService.ensure_jobs_registered()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-sweep")
    @click.option("--job", default="inspection_sweep", show_default=True,
                  help="Registered job name to run.")
    def run_sweep_cmd(job):
        """Run the recurring-inspection sweep once (for cron without HTTP)."""
        SchedulerService.ensure_jobs_registered()
        outcome = SchedulerService.run_job(job, force=True)
        result = outcome.get("result") or {}
        click.echo(f"{job}: {outcome.get('status')} in {outcome.get('duration_ms', 0)}ms")
        for name, count in (result.get("counts") or {}).items():
            click.echo(f"  {name}: {count}")
        if outcome.get("status") != "success":
            raise SystemExit(1)

    return app
