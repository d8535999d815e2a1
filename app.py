import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
from flask import Flask
from flask.logging import default_handler
from werkzeug.exceptions import HTTPException

from config import Config
from extensions import db, limiter, mail, migrate
from routes.analytics import analytics_bp
from routes.attendance_routes import attendance_bp
from routes.fee_routes import fee_bp
from routes.grade_routes import grade_bp
from routes.promotion_routes import promotion_bp
from routes.reminder_routes import reminder_bp
from routes.resource_routes import announcement_bp, resource_bp
from routes.student_routes import class_bp, student_bp
from utils.errors import ServiceError
from utils.responses import fail

BLUEPRINTS = (
    student_bp,
    class_bp,
    grade_bp,
    attendance_bp,
    fee_bp,
    promotion_bp,
    reminder_bp,
    analytics_bp,
    resource_bp,
    announcement_bp,
)


def configure_logging(app):
    level = app.config.get("LOG_LEVEL", "INFO")
    app.logger.setLevel(level)
    app.logger.removeHandler(default_handler)
    # app.logger is shared by every app built from this module.
    if app.logger.handlers:
        for handler in app.logger.handlers:
            handler.setLevel(level)
        return

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s"))
    app.logger.addHandler(console)

    if not app.testing:
        log_dir = Path(app.config.get("LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_dir / "app.log", maxBytes=2_000_000, backupCount=5)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(funcName)s: %(message)s"))
        app.logger.addHandler(file_handler)


def register_error_handlers(app):
    @app.errorhandler(ServiceError)
    def _service_error(exc: ServiceError):
        db.session.rollback()
        if exc.status_code >= 500:
            app.logger.error("%s: %s", type(exc).__name__, exc.message)
        return exc.to_dict(), exc.status_code

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return fail(exc.description or exc.name, exc.code or 500, error=exc.name)

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return fail("Internal server error", 500, error=type(exc).__name__)


def register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("run-reminders")
    def run_reminders():
        """Run the daily reminder job once."""
        from scheduler import daily_job

        summary = daily_job(app)
        click.echo(f"Created {summary['created']} reminders, sent {summary['sent']}, failed {summary['failed']}.")


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.json.sort_keys = False
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    mail.init_app(app)
    limiter.init_app(app)

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)

    @app.route("/healthz")
    def healthz():
        return {"success": True, "status": "ok"}

    register_error_handlers(app)
    register_commands(app)

    # The reloader imports the app twice; only the serving child starts jobs.
    if app.config.get("ENABLE_SCHEDULER") and os.environ.get("WERKZEUG_RUN_MAIN") != "false":
        from scheduler import start_scheduler

        app.extensions["reminder_scheduler"] = start_scheduler(app)

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
