"""
Application factory for the Student Clearance Tracker.

This module provides create_app() which initializes Flask, extensions,
logging, error handlers, and registers blueprints.
"""

import os
import logging
from datetime import timedelta
from logging.handlers import RotatingFileHandler

import pytz
from flask import Flask, jsonify, request
from flask_wtf.csrf import CSRFError
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# Validate required environment variables
required_env_vars = ["SECRET_KEY", "DATABASE_URL", "FLASK_ENV"]
missing_vars = [var for var in required_env_vars if not os.getenv(var)]
if missing_vars:
    raise RuntimeError(
        "Missing required environment variables: " + ", ".join(missing_vars)
    )


# -------------------- UTILITIES --------------------
from clearance.utils.constants import (  # noqa: E402
    LOCK_DURATION_MINUTES,
    LOGIN_ATTEMPT_RETENTION_HOURS,
    LOGIN_WINDOW_MINUTES,
    MAX_LOGIN_ATTEMPTS,
)


def env_flag(name, default=False):
    """Read a boolean environment variable ("1", "true", "yes", "on")."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {value!r}")


def _school_timezone():
    tz_name = os.getenv("SCHOOL_TIMEZONE", "Africa/Johannesburg")
    try:
        pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        raise RuntimeError(f"Unknown SCHOOL_TIMEZONE: {tz_name}")
    return tz_name


# -------------------- APPLICATION FACTORY --------------------

def create_app():
    """
    Application factory function.

    Creates and configures the Flask application, initializes extensions,
    sets up logging, and registers blueprints, CLI commands and scheduled tasks.

    Returns:
        Flask: Configured Flask application instance
    """
    app = Flask(__name__)

    # -------------------- CONFIGURATION --------------------
    session_timeout = env_int("SESSION_TIMEOUT_MINUTES", 30)
    app.config.from_mapping(
        DEBUG=False,
        ENV=os.environ["FLASK_ENV"],
        SECRET_KEY=os.environ["SECRET_KEY"],
        SQLALCHEMY_DATABASE_URI=os.environ["DATABASE_URL"],
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SESSION_COOKIE_SECURE=True,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_TIMEOUT_MINUTES=session_timeout,
        PERMANENT_SESSION_LIFETIME=timedelta(minutes=session_timeout),
        RATELIMIT_ENABLED=env_flag("RATELIMIT_ENABLED", True),
        REQUIRE_YEAR_HEAD_APPROVAL=env_flag("REQUIRE_YEAR_HEAD_APPROVAL", True),
        MAX_LOGIN_ATTEMPTS=env_int("MAX_LOGIN_ATTEMPTS", MAX_LOGIN_ATTEMPTS),
        LOGIN_WINDOW_MINUTES=env_int("LOGIN_WINDOW_MINUTES", LOGIN_WINDOW_MINUTES),
        LOCK_DURATION_MINUTES=env_int("LOCK_DURATION_MINUTES", LOCK_DURATION_MINUTES),
        LOGIN_ATTEMPT_RETENTION_HOURS=env_int("LOGIN_ATTEMPT_RETENTION_HOURS", LOGIN_ATTEMPT_RETENTION_HOURS),
        DEMO_PASSWORD=os.getenv("DEMO_PASSWORD", "password"),
        WEBHOOK_URL=os.getenv("WEBHOOK_URL"),
        WEBHOOK_TIMEOUT_SECONDS=env_int("WEBHOOK_TIMEOUT_SECONDS", 10),
        SCHOOL_TIMEZONE=_school_timezone(),
    )

    # -------------------- EXTENSIONS --------------------
    from clearance.extensions import db, migrate, csrf, limiter

    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)

    # -------------------- LOGGING --------------------
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = os.getenv(
        "LOG_FORMAT",
        "[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(logging.Formatter(log_format))

    app.logger.setLevel(log_level)
    # Prevent duplicate log entries by clearing handlers first
    app.logger.handlers.clear()
    app.logger.addHandler(stream_handler)

    scheduler_logger = logging.getLogger('scheduled_tasks')
    scheduler_logger.setLevel(log_level)
    if not scheduler_logger.handlers:
        scheduler_logger.addHandler(stream_handler)

    if os.getenv("FLASK_ENV", app.config.get("ENV")) == "production":
        log_file = os.getenv("LOG_FILE", "app.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        app.logger.addHandler(file_handler)
        scheduler_logger.addHandler(file_handler)

    # -------------------- REGISTER BLUEPRINTS --------------------
    from clearance.routes.main import main_bp
    from clearance.routes.auth import auth_bp
    from clearance.routes.api import api_bp
    from clearance.routes.admin import admin_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp)

    # -------------------- ERROR HANDLERS --------------------
    @app.errorhandler(CSRFError)
    def handle_csrf_error(error):
        app.logger.warning(f"CSRF validation failed on {request.path}: {error.description}")
        return jsonify(status="error", code="CSRF_FAILED", message=error.description), 400

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify(status="error", code="NOT_FOUND", message="Resource not found."), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify(status="error", code="METHOD_NOT_ALLOWED", message="Method not allowed."), 405

    @app.errorhandler(429)
    def handle_rate_limit(error):
        app.logger.warning(f"Rate limit hit on {request.path} from {request.remote_addr}")
        return jsonify(
            status="error",
            code="RATE_LIMITED",
            message="Too many requests. Please slow down.",
        ), 429

    # -------------------- SECURITY HEADERS --------------------
    @app.after_request
    def set_security_headers(response):
        """
        Add security headers to all HTTP responses.

        - HSTS: Force HTTPS connections
        - X-Frame-Options: Prevent clickjacking
        - X-Content-Type-Options: Prevent MIME sniffing attacks
        - CSP: Nothing but same-origin JSON is served
        - Referrer-Policy: Control referrer information leakage

        See: https://owasp.org/www-project-secure-headers/
        """
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        response.headers['Cache-Control'] = 'no-store'
        return response

    # -------------------- CLI COMMANDS --------------------
    from clearance import cli_commands
    cli_commands.init_app(app)

    # -------------------- SCHEDULED TASKS --------------------
    if not app.config.get("TESTING") and app.config.get("ENV") != "testing":
        from clearance.scheduled_tasks import init_scheduled_tasks
        init_scheduled_tasks(app)

    return app


# Create a default application instance for `flask --app clearance` and wsgi
app = create_app()

# Re-export commonly used objects for convenience
from clearance.extensions import db  # noqa: E402
from clearance.models import Student, User, ClearanceItem  # noqa: E402

__all__ = [
    "app",
    "create_app",
    "db",
    "Student",
    "User",
    "ClearanceItem",
]
