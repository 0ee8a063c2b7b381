"""
Sparks Immersion Planner
Flask Application Factory.

Usage:
    from sparks import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from sparks.config import config
from sparks.middleware.logging_config import configure_logging
from sparks.middleware.rate_limiter import init_rate_limits
from sparks.middleware.timing import init_request_timing
from sparks.models import db
from sparks.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    cfg_cls = config[config_name]
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(cfg_cls() if config_name == "production" else cfg_cls)

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

    # ── Models (register tables on the metadata) ─────────────────────────
    from sparks.models import immersion, notification, scheduling, template  # noqa: F401

    if config_name == "development":
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from sparks.blueprints.cron_bp import cron_bp
    from sparks.blueprints.dashboard_bp import dashboard_bp
    from sparks.blueprints.health_bp import health_bp
    from sparks.blueprints.immersion_bp import immersion_bp
    from sparks.blueprints.notification_bp import notification_bp

    app.register_blueprint(immersion_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-notifications")
    @click.option("--force", is_flag=True, help="Bypass the weekly cadence gate.")
    @click.option("--dry-run", is_flag=True,
                  help="Preview only; defaults to preview unless ENABLE_EMAIL_NOTIFICATIONS=1.")
    def run_notifications_cmd(force, dry_run):
        """Run one e-mail notification cycle."""
        from sparks.services.scheduler_service import SchedulerService
        outcome = SchedulerService.run_job("email_notifications", force=force, dry_run=dry_run or None)
        click.echo(f"{outcome['status']}: {outcome.get('result') or outcome.get('error')}")

    @app.cli.command("mark-overdue")
    def mark_overdue_cmd():
        """Flag open tasks past their due date as Atrasada."""
        from sparks.services.scheduler_service import SchedulerService
        outcome = SchedulerService.run_job("overdue_marker")
        click.echo(f"{outcome['status']}: {outcome.get('result') or outcome.get('error')}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("sparks.services.scheduled_jobs")  # registers @register_job handlers
    from sparks.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if config_name == "development":
        SchedulerService.ensure_jobs_registered()

    return app
